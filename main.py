import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from core.config import settings  # noqa: E402
from core.database import create_db_and_tables, engine  # noqa: E402
from core.errors import AppError  # noqa: E402
from routes.admin_books import router as admin_books_router  # noqa: E402
from routes.admin_categories import router as admin_categories_router  # noqa: E402
from routes.admin_pricing import router as admin_pricing_router  # noqa: E402
from routes.admin_reports import router as reports_router  # noqa: E402
from routes.admin_smart_book import router as smart_book_router  # noqa: E402
from routes.admin_users import router as admin_users_router  # noqa: E402
from routes.auth import router as auth_router  # noqa: E402
from routes.books import router as books_router  # noqa: E402
from routes.payments import router as payments_router  # noqa: E402
from routes.public import router as public_router  # noqa: E402
from routes.setup import router as setup_router  # noqa: E402
from routes.webhooks import router as webhooks_router  # noqa: E402
from services.payment_session_service import expire_stale_sessions  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("bxlibrary")


# =========================================
# 🏁 Lifespan (DB initialization + stale session sweep)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    try:
        with Session(engine) as session:
            expire_stale_sessions(session)
    except SQLAlchemyError:
        logger.exception("⚠️ Stale payment session sweep failed")
    logger.info("✅ BX Library backend started.")
    yield
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="BX Library Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# 🚨 Error handlers
# =========================================
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
    content = {"error": "Internal server error"}
    if settings.DEBUG and not settings.IS_PRODUCTION:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# =========================================
# 📦 Routers
# =========================================
app.include_router(auth_router, prefix="/api/auth")
app.include_router(admin_users_router, prefix="/api/admin/users")
app.include_router(admin_categories_router, prefix="/api/admin/categories")
app.include_router(admin_books_router, prefix="/api/admin/books")
app.include_router(admin_pricing_router, prefix="/api/admin/pricing")
app.include_router(smart_book_router, prefix="/api/admin/smart-book")
app.include_router(reports_router, prefix="/api")
app.include_router(books_router, prefix="/api")
app.include_router(public_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api/webhooks")
app.include_router(setup_router, prefix="/api/setup")


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running"}


@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.SITE_NAME} Backend!"}
