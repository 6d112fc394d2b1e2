# routes/admin_books.py
from typing import List, Optional
import logging
import math

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlmodel import Session, select

from core.database import get_session
from core.errors import AppError, NotFoundError
from core.security import get_current_admin
from models.models import Book, BookCategoryLink, User, utc_now
from schemas.catalog_schema import (
    BookAction, BookCreate, BookImportRow, BookListResponse, BookRead, BookStatus, BookUpdate, ImportResult,
)
from services import catalog_service, drive_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin Books"])


def _get_book(session: Session, book_id: int, include_deleted: bool = False) -> Book:
    book = session.get(Book, book_id)
    if not book or (book.is_deleted and not include_deleted):
        raise NotFoundError("Book not found")
    return book


# ----------------------------------------------------------------------
# ✅ List Books
# ----------------------------------------------------------------------
@router.get("", response_model=BookListResponse)
def list_books(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    status_filter: Optional[BookStatus] = Query(None, alias="status"),
    sort: Optional[str] = None,
    include_deleted: bool = False,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    query = select(Book)
    if not include_deleted:
        query = query.where(Book.is_deleted == False)  # noqa: E712
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(func.lower(Book.title).like(pattern), func.lower(Book.author).like(pattern)))
    if category_id:
        query = query.join(BookCategoryLink, BookCategoryLink.book_id == Book.id).where(
            BookCategoryLink.category_id == category_id
        )
    if status_filter:
        query = query.where(Book.status == status_filter.value)

    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    books = session.exec(catalog_service.order_by(query, catalog_service.BOOK_SORTS, sort, "newest").offset((page - 1) * limit).limit(limit)).all()
    return {
        "books": [catalog_service.serialize_book(b) for b in books],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


# ----------------------------------------------------------------------
# ✅ Create Book
# ----------------------------------------------------------------------
def _create_book(session: Session, payload: BookCreate, admin: User) -> Book:
    categories = catalog_service.load_categories(session, payload.category_ids)
    file_id = catalog_service.resolve_drive_file(session, payload.drive_url)
    images = catalog_service.validate_images([img.model_dump() for img in payload.images])

    book = Book(
        title=payload.title.strip(),
        author=payload.author.strip(),
        description=payload.description.strip(),
        drive_url=drive_service.get_canonical_url(file_id),
        drive_file_id=file_id,
        images=images,
        created_by_id=admin.id,
        updated_by_id=admin.id,
    )
    book.categories = categories
    catalog_service.set_status(book, payload.status.value)

    metadata = drive_service.get_file_metadata(file_id)
    if metadata:
        book.thumbnail_url = metadata.get("thumbnailLink")
        if metadata.get("size"):
            book.file_size = int(metadata["size"])

    session.add(book)
    session.commit()
    session.refresh(book)
    catalog_service.recompute_book_counts(session, [c.id for c in categories])
    return book


@router.post("", response_model=BookRead, status_code=status.HTTP_201_CREATED)
def create_book(
    payload: BookCreate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = _create_book(session, payload, admin)
    logger.info(f"📚 Book '{book.title}' created by {admin.email}")
    return catalog_service.serialize_book(book)


# ----------------------------------------------------------------------
# ✅ Bulk import
# ----------------------------------------------------------------------
@router.post("/bulk-import", response_model=ImportResult)
def bulk_import_books(
    rows: List[BookImportRow],
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """Rows reference categories by name. Each row succeeds or fails alone."""
    created, errors = 0, []
    for index, row in enumerate(rows):
        try:
            category_ids = []
            for name in row.categories:
                category = catalog_service.find_active_category_by_name(session, name)
                if not category:
                    raise NotFoundError(f"Category '{name}' not found")
                category_ids.append(category.id)
            payload = BookCreate(
                title=row.title,
                author=row.author,
                description=row.description,
                drive_url=row.drive_url,
                category_ids=category_ids,
                status=row.status,
            )
            _create_book(session, payload, admin)
            created += 1
        except AppError as exc:
            session.rollback()
            errors.append({"row": index, "title": row.title, "error": exc.message})
        except ValueError as exc:
            errors.append({"row": index, "title": row.title, "error": str(exc)})

    logger.info(f"📥 Book import by {admin.email}: {created} created, {len(errors)} failed")
    return ImportResult(created=created, failed=len(errors), errors=errors)


# ----------------------------------------------------------------------
# ✅ Get / Update
# ----------------------------------------------------------------------
@router.get("/{book_id}", response_model=BookRead)
def get_book(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return catalog_service.serialize_book(_get_book(session, book_id, include_deleted=True))


@router.put("/{book_id}", response_model=BookRead)
def update_book(
    book_id: int,
    payload: BookUpdate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = _get_book(session, book_id)
    affected = set(catalog_service.category_ids_of(book))

    if payload.action == BookAction.PUBLISH:
        catalog_service.set_status(book, BookStatus.PUBLISHED.value)
    elif payload.action == BookAction.UNPUBLISH:
        catalog_service.set_status(book, BookStatus.DRAFT.value)
    elif payload.action == BookAction.ARCHIVE:
        catalog_service.set_status(book, BookStatus.ARCHIVED.value)
    elif payload.action == BookAction.REFRESH_THUMBNAIL:
        catalog_service.refresh_thumbnail(book)

    if payload.title is not None:
        book.title = payload.title.strip()
    if payload.author is not None:
        book.author = payload.author.strip()
    if payload.description is not None:
        book.description = payload.description.strip()
    if payload.drive_url is not None:
        file_id = catalog_service.resolve_drive_file(session, payload.drive_url, exclude_book_id=book.id)
        if file_id != book.drive_file_id:
            book.drive_file_id = file_id
            book.drive_url = drive_service.get_canonical_url(file_id)
            catalog_service.refresh_thumbnail(book)
    if payload.images is not None:
        book.images = catalog_service.validate_images([img.model_dump() for img in payload.images])
    if payload.category_ids is not None:
        book.categories = catalog_service.load_categories(session, payload.category_ids)
        affected |= {c.id for c in book.categories}
    if payload.status is not None and payload.action is None:
        catalog_service.set_status(book, payload.status.value)

    book.updated_by_id = admin.id
    book.updated_at = utc_now()
    session.add(book)
    session.commit()
    catalog_service.recompute_book_counts(session, affected)
    session.refresh(book)
    return catalog_service.serialize_book(book)


# ----------------------------------------------------------------------
# ✅ Delete / Restore
# ----------------------------------------------------------------------
@router.delete("/{book_id}")
def delete_book(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = _get_book(session, book_id)
    catalog_service.soft_delete_book(session, book, admin.id)
    logger.info(f"🗑️ Book {book_id} deleted by {admin.email}")
    return {"message": "Book deleted successfully"}


@router.post("/{book_id}/restore", response_model=BookRead)
def restore_book(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = catalog_service.restore_book(session, _get_book(session, book_id, include_deleted=True))
    return catalog_service.serialize_book(book)
