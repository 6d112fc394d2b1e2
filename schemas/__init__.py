from .auth_schema import (
    UserLogin, LoginResponse, AcceptInvite, ForgotPassword, ResetPassword,
    ProfileUpdate, VerifyEmail, ResendVerification, SignupWithPayment,
    CreateFirstAdmin, MessageResponse,
)
from .catalog_schema import (
    BookStatus, BookAction,
    CategoryCreate, CategoryUpdate, CategoryRead, CategorySummary, CategoryListResponse,
    BookImage, BookCreate, BookUpdate, BookRead, BookListResponse,
    CategoryImportRow, BookImportRow, ImportResult,
    ReadingProgressUpdate, ReadingSessionRead,
)
from .payment_schema import (
    Currency, BillingPeriod, Provider,
    PlanFeature, PricingCreate, PricingUpdate, PricingRead,
    GuestCheckoutRequest, CheckoutResponse,
    PaymentConfirmation, CreateSessionRequest, SignupTokenResponse, ValidateSignupToken,
    VerifyPaymentRequest, PaymentSessionRead, SubscriptionRead, PaymentConfigRead,
)
from .smart_book_schema import SmartPage, SmartBookUpdate, SmartBookRead
from .user_schema import (
    UserRole, UserStatus, UserAction, SubscriptionSnapshot,
    UserRead, AuditEntryRead, UserDetailRead, UserListResponse, UserCreate, UserUpdate,
    serialize_user,
)

__all__ = [
    # Auth
    "UserLogin", "LoginResponse", "AcceptInvite", "ForgotPassword", "ResetPassword",
    "ProfileUpdate", "VerifyEmail", "ResendVerification", "SignupWithPayment",
    "CreateFirstAdmin", "MessageResponse",

    # Catalog
    "BookStatus", "BookAction",
    "CategoryCreate", "CategoryUpdate", "CategoryRead", "CategorySummary", "CategoryListResponse",
    "BookImage", "BookCreate", "BookUpdate", "BookRead", "BookListResponse",
    "CategoryImportRow", "BookImportRow", "ImportResult",
    "ReadingProgressUpdate", "ReadingSessionRead",

    # Payment
    "Currency", "BillingPeriod", "Provider",
    "PlanFeature", "PricingCreate", "PricingUpdate", "PricingRead",
    "GuestCheckoutRequest", "CheckoutResponse",
    "PaymentConfirmation", "CreateSessionRequest", "SignupTokenResponse", "ValidateSignupToken",
    "VerifyPaymentRequest", "PaymentSessionRead", "SubscriptionRead", "PaymentConfigRead",

    # Smart book
    "SmartPage", "SmartBookUpdate", "SmartBookRead",

    # User
    "UserRole", "UserStatus", "UserAction", "SubscriptionSnapshot",
    "UserRead", "AuditEntryRead", "UserDetailRead", "UserListResponse", "UserCreate", "UserUpdate", "serialize_user",
]
