# routes/admin_categories.py
from typing import List, Optional
import logging
import math

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import ConflictError
from core.security import get_current_admin
from models.models import Category, User, utc_now
from schemas.catalog_schema import (
    CategoryCreate, CategoryImportRow, CategoryListResponse, CategoryRead, CategoryUpdate, ImportResult,
)
from services import catalog_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin Categories"])


def _save(session: Session, category: Category) -> Category:
    try:
        session.add(category)
        session.commit()
        session.refresh(category)
        return category
    except IntegrityError:
        session.rollback()
        raise ConflictError("A category with this name already exists")


# ----------------------------------------------------------------------
# ✅ List Categories
# ----------------------------------------------------------------------
@router.get("", response_model=CategoryListResponse)
def list_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    sort: Optional[str] = None,
    include_deleted: bool = False,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    query = select(Category)
    if not include_deleted:
        query = query.where(Category.is_deleted == False)  # noqa: E712
    if search:
        query = query.where(func.lower(Category.name).like(f"%{search.strip().lower()}%"))

    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    categories = session.exec(catalog_service.order_by(query, catalog_service.CATEGORY_SORTS, sort, "name").offset((page - 1) * limit).limit(limit)).all()
    return CategoryListResponse(
        categories=[CategoryRead.model_validate(c) for c in categories],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


# ----------------------------------------------------------------------
# ✅ Create Category
# ----------------------------------------------------------------------
@router.post("", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    name = payload.name.strip()
    if catalog_service.find_active_category_by_name(session, name):
        raise ConflictError("A category with this name already exists")

    category = Category(
        name=name,
        description=payload.description.strip(),
        color=payload.color,
        is_active=payload.is_active,
        created_by_id=admin.id,
    )
    _save(session, category)
    logger.info(f"🏷️ Category '{category.name}' created by {admin.email}")
    return category


# ----------------------------------------------------------------------
# ✅ Bulk import
# ----------------------------------------------------------------------
@router.post("/bulk-import", response_model=ImportResult)
def bulk_import_categories(
    rows: List[CategoryImportRow],
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """Create categories row by row; failures are reported, not fatal."""
    created, errors = 0, []
    for index, row in enumerate(rows):
        name = row.name.strip()
        if not name:
            errors.append({"row": index, "error": "Name is required"})
            continue
        if catalog_service.find_active_category_by_name(session, name):
            errors.append({"row": index, "name": name, "error": "Category already exists"})
            continue
        try:
            payload = CategoryCreate(name=name, description=row.description, color=row.color)
        except ValueError as exc:
            errors.append({"row": index, "name": name, "error": str(exc)})
            continue
        try:
            _save(session, Category(**payload.model_dump(), created_by_id=admin.id))
            created += 1
        except ConflictError as exc:
            errors.append({"row": index, "name": name, "error": exc.message})

    logger.info(f"📥 Category import by {admin.email}: {created} created, {len(errors)} failed")
    return ImportResult(created=created, failed=len(errors), errors=errors)


# ----------------------------------------------------------------------
# ✅ Get / Update
# ----------------------------------------------------------------------
@router.get("/{category_id}", response_model=CategoryRead)
def get_category(
    category_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return catalog_service.get_category(session, category_id, include_deleted=True)


@router.put("/{category_id}", response_model=CategoryRead)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    category = catalog_service.get_category(session, category_id)
    data = payload.model_dump(exclude_unset=True)

    if "name" in data:
        name = data["name"].strip()
        if catalog_service.find_active_category_by_name(session, name, exclude_id=category.id):
            raise ConflictError("A category with this name already exists")
        data["name"] = name

    for key, value in data.items():
        if value is not None:
            setattr(category, key, value)
    category.updated_at = utc_now()
    return _save(session, category)


# ----------------------------------------------------------------------
# ✅ Delete / Restore
# ----------------------------------------------------------------------
@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    force: bool = False,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    category = catalog_service.get_category(session, category_id, include_deleted=force)
    result = catalog_service.delete_category(session, category, admin.id, force=force)
    logger.info(f"🗑️ Category {category_id} deleted by {admin.email} (force={force})")
    return result


@router.post("/{category_id}/restore", response_model=CategoryRead)
def restore_category(
    category_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    category = catalog_service.get_category(session, category_id, include_deleted=True)
    return catalog_service.restore_category(session, category)
