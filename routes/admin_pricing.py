# routes/admin_pricing.py
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import ConflictError, NotFoundError
from core.security import get_current_admin
from models.models import PaymentSession, Pricing, Subscription, User, utc_now
from schemas.payment_schema import PricingCreate, PricingRead, PricingUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin Pricing"])


def _get_plan(session: Session, plan_id: int) -> Pricing:
    plan = session.get(Pricing, plan_id)
    if not plan:
        raise NotFoundError("Pricing plan not found")
    return plan


def _name_taken(session: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    query = select(Pricing).where(func.lower(Pricing.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.where(Pricing.id != exclude_id)
    return session.exec(query).first() is not None


def _save(session: Session, plan: Pricing) -> Pricing:
    try:
        session.add(plan)
        session.commit()
        session.refresh(plan)
        return plan
    except IntegrityError:
        session.rollback()
        raise ConflictError("A pricing plan with this name already exists")


# ----------------------------------------------------------------------
# ✅ CRUD
# ----------------------------------------------------------------------
@router.get("", response_model=List[PricingRead])
def list_plans(
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    query = select(Pricing)
    if search:
        query = query.where(func.lower(Pricing.name).like(f"%{search.strip().lower()}%"))
    if is_active is not None:
        query = query.where(Pricing.is_active == is_active)
    return session.exec(query.order_by(Pricing.sort_order, Pricing.price)).all()


@router.post("", response_model=PricingRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PricingCreate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    if _name_taken(session, payload.name):
        raise ConflictError("A pricing plan with this name already exists")

    data = payload.model_dump(mode="json")
    data["name"] = data["name"].strip()
    plan = _save(session, Pricing(**data, created_by_id=admin.id, updated_by_id=admin.id))
    logger.info(f"💰 Pricing plan '{plan.name}' created by {admin.email}")
    return plan


@router.get("/{plan_id}", response_model=PricingRead)
def get_plan(
    plan_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return _get_plan(session, plan_id)


@router.put("/{plan_id}", response_model=PricingRead)
def update_plan(
    plan_id: int,
    payload: PricingUpdate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    plan = _get_plan(session, plan_id)
    data = payload.model_dump(mode="json", exclude_unset=True)

    if data.get("name"):
        data["name"] = data["name"].strip()
        if _name_taken(session, data["name"], exclude_id=plan.id):
            raise ConflictError("A pricing plan with this name already exists")

    for key, value in data.items():
        if value is not None or key == "button_link":
            setattr(plan, key, value)
    plan.updated_by_id = admin.id
    plan.updated_at = utc_now()
    return _save(session, plan)


@router.delete("/{plan_id}")
def delete_plan(
    plan_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """Hard delete an unused plan; a referenced plan is deactivated instead."""
    plan = _get_plan(session, plan_id)

    referenced = (
        session.exec(select(func.count(PaymentSession.id)).where(PaymentSession.plan_id == plan.id)).one()
        + session.exec(select(func.count(Subscription.id)).where(Subscription.pricing_plan_id == plan.id)).one()
        + session.exec(select(func.count(User.id)).where(User.subscription_plan_id == plan.id)).one()
    )
    if referenced:
        plan.is_active = False
        plan.updated_by_id = admin.id
        plan.updated_at = utc_now()
        _save(session, plan)
        logger.info(f"⏸️ Pricing plan {plan.id} is in use; deactivated instead of deleted")
        return {"message": "Pricing plan is in use and has been deactivated", "deactivated": True}

    session.delete(plan)
    session.commit()
    logger.info(f"🗑️ Pricing plan {plan_id} deleted by {admin.email}")
    return {"message": "Pricing plan deleted successfully", "deactivated": False}
