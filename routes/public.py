# routes/public.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from core.config import Settings, get_settings
from core.database import get_session
from models.models import Pricing
from routes.books import active_categories, paginate_books, published_books_query
from schemas.catalog_schema import BookListResponse, CategoryRead
from schemas.payment_schema import PaymentConfigRead, PricingRead
from services import report_service
from services.payment_providers import enabled_providers

router = APIRouter(tags=["Public"])


@router.get("/public/books", response_model=BookListResponse)
def public_books(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    sort: Optional[str] = None,
    session: Session = Depends(get_session),
):
    return paginate_books(session, published_books_query(search, category_id), page, limit, sort)


@router.get("/public/categories", response_model=List[CategoryRead])
def public_categories(session: Session = Depends(get_session)):
    return active_categories(session)


@router.get("/public/stats")
def public_stats(session: Session = Depends(get_session)):
    return report_service.public_stats(session)


@router.get("/public/payment-config", response_model=PaymentConfigRead)
def payment_config(config: Settings = Depends(get_settings)):
    return {**enabled_providers(config), "currency": "USD"}


@router.get("/pricing", response_model=List[PricingRead])
def active_pricing(session: Session = Depends(get_session)):
    """Active plans in display order."""
    return session.exec(
        select(Pricing).where(Pricing.is_active == True).order_by(Pricing.sort_order, Pricing.price)  # noqa: E712
    ).all()
