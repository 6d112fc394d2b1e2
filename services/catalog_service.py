# services/catalog_service.py
import logging
from typing import Iterable, List, Optional, Dict, Any

from sqlalchemy import func, update
from sqlmodel import Session, select

from core.errors import ConflictError, NotFoundError, ValidationError
from models.models import Book, BookCategoryLink, BookStatus, Category, utc_now
from services import drive_service

logger = logging.getLogger(__name__)

MAX_CATEGORIES_PER_BOOK = 5
MAX_IMAGES_PER_BOOK = 5


# ============================================================
# ✅ Derived counts
# ============================================================
def count_books(session: Session, category_id: int) -> int:
    """Non-deleted books referencing the category."""
    return session.exec(
        select(func.count(Book.id))
        .join(BookCategoryLink, BookCategoryLink.book_id == Book.id)
        .where(BookCategoryLink.category_id == category_id, Book.is_deleted == False)  # noqa: E712
    ).one()


def recompute_book_counts(session: Session, category_ids: Iterable[Optional[int]]) -> None:
    """Rewrite book_count for each category and commit.

    Called explicitly after every write that changes book membership or
    deletion state.
    """
    ids = {cid for cid in category_ids if cid is not None}
    for category_id in ids:
        session.exec(
            update(Category)
            .where(Category.id == category_id)
            .values(book_count=count_books(session, category_id))
        )
    if ids:
        session.commit()
        logger.debug(f"🔢 Recomputed book_count for categories {sorted(ids)}")


def category_ids_of(book: Book) -> List[int]:
    return [c.id for c in book.categories]


BOOK_SORTS = {
    "newest": Book.created_at.desc(),
    "oldest": Book.created_at.asc(),
    "title": Book.title.asc(),
    "author": Book.author.asc(),
    "popular": Book.read_count.desc(),
}
CATEGORY_SORTS = {
    "name": Category.name.asc(),
    "books": Category.book_count.desc(),
    "newest": Category.created_at.desc(),
}


def order_by(query, sorts: Dict[str, Any], sort: Optional[str], default: str):
    if sort and sort not in sorts:
        raise ValidationError(f"Invalid sort '{sort}'", allowed=sorted(sorts))
    return query.order_by(sorts[sort or default])


# ============================================================
# ✅ Categories
# ============================================================
def find_active_category_by_name(session: Session, name: str, exclude_id: Optional[int] = None) -> Optional[Category]:
    query = select(Category).where(
        func.lower(Category.name) == name.strip().lower(),
        Category.is_deleted == False,  # noqa: E712
    )
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    return session.exec(query).first()


def get_category(session: Session, category_id: int, include_deleted: bool = False) -> Category:
    category = session.get(Category, category_id)
    if not category or (category.is_deleted and not include_deleted):
        raise NotFoundError("Category not found")
    return category


def delete_category(session: Session, category: Category, user_id: int, force: bool = False) -> Dict[str, Any]:
    """Soft delete, or hard delete with ``force``.

    Without force a category still holding books is refused with its live
    count. Force removes the category and clears every book's reference.
    """
    active_books = count_books(session, category.id)

    if force:
        # deleting the category removes its link rows with it
        session.delete(category)
        session.commit()
        logger.info(f"🗑️ Category {category.id} force-deleted ({active_books} book reference(s) cleared)")
        return {"message": "Category permanently deleted", "books_updated": active_books}

    if category.is_deleted:
        raise ValidationError("Category is already deleted")

    if active_books > 0:
        raise ValidationError(
            "Cannot delete category with existing books. Use force=true to delete anyway.",
            book_count=active_books,
        )

    category.is_deleted = True
    category.deleted_at = utc_now()
    category.deleted_by_id = user_id
    category.updated_at = utc_now()
    session.add(category)
    session.commit()
    return {"message": "Category deleted successfully"}


def restore_category(session: Session, category: Category) -> Category:
    if not category.is_deleted:
        raise ValidationError("Category is not deleted")
    if find_active_category_by_name(session, category.name, exclude_id=category.id):
        raise ConflictError("A category with this name already exists")

    category.is_deleted = False
    category.deleted_at = None
    category.deleted_by_id = None
    category.updated_at = utc_now()
    session.add(category)
    session.commit()
    recompute_book_counts(session, [category.id])
    session.refresh(category)
    return category


# ============================================================
# ✅ Books
# ============================================================
def load_categories(session: Session, category_ids: List[int]) -> List[Category]:
    unique_ids = list(dict.fromkeys(category_ids or []))
    if not unique_ids:
        raise ValidationError("At least one category is required")
    if len(unique_ids) > MAX_CATEGORIES_PER_BOOK:
        raise ValidationError(f"A book can have at most {MAX_CATEGORIES_PER_BOOK} categories")

    categories = session.exec(
        select(Category).where(Category.id.in_(unique_ids), Category.is_deleted == False)  # noqa: E712
    ).all()
    if len(categories) != len(unique_ids):
        raise ValidationError("One or more categories are invalid")
    return list(categories)


def resolve_drive_file(session: Session, drive_url: str, exclude_book_id: Optional[int] = None) -> str:
    file_id = drive_service.extract_file_id(drive_url)
    if not file_id:
        raise ValidationError("Invalid Google Drive URL")

    query = select(Book).where(Book.drive_file_id == file_id, Book.is_deleted == False)  # noqa: E712
    if exclude_book_id is not None:
        query = query.where(Book.id != exclude_book_id)
    if session.exec(query).first():
        raise ConflictError("A book with this Google Drive file already exists")
    return file_id


def validate_images(images: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    images = [img for img in (images or []) if img and img.get("url")]
    if len(images) > MAX_IMAGES_PER_BOOK:
        raise ValidationError(f"A book can have at most {MAX_IMAGES_PER_BOOK} images")
    return images


def refresh_thumbnail(book: Book) -> None:
    """Best effort: a Drive failure leaves the existing thumbnail alone."""
    try:
        thumbnail = drive_service.get_thumbnail_url(book.drive_file_id)
    except Exception:
        logger.exception(f"⚠️ Thumbnail lookup crashed for book {book.id}")
        return
    if thumbnail:
        book.thumbnail_url = thumbnail


def set_status(book: Book, status: str) -> None:
    book.status = status
    if status == BookStatus.PUBLISHED.value and not book.published_at:
        book.published_at = utc_now()


def soft_delete_book(session: Session, book: Book, user_id: int) -> None:
    affected = category_ids_of(book)
    book.is_deleted = True
    book.deleted_at = utc_now()
    book.deleted_by_id = user_id
    book.updated_at = utc_now()
    session.add(book)
    session.commit()
    recompute_book_counts(session, affected)


def restore_book(session: Session, book: Book) -> Book:
    if not book.is_deleted:
        raise ValidationError("Book is not deleted")
    resolve_drive_file(session, book.drive_file_id, exclude_book_id=book.id)
    book.is_deleted = False
    book.deleted_at = None
    book.deleted_by_id = None
    book.updated_at = utc_now()
    session.add(book)
    session.commit()
    recompute_book_counts(session, category_ids_of(book))
    session.refresh(book)
    return book


def serialize_book(book: Book) -> Dict[str, Any]:
    """API view of a book with its (non-deleted) categories and embed URL."""
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "description": book.description,
        "categories": [
            {"id": c.id, "name": c.name, "color": c.color}
            for c in book.categories if not c.is_deleted
        ],
        "drive_url": book.drive_url,
        "drive_file_id": book.drive_file_id,
        "embed_url": drive_service.get_embed_url(book.drive_file_id),
        "images": book.images or [],
        "thumbnail_url": book.thumbnail_url,
        "status": book.status,
        "published_at": book.published_at,
        "file_size": book.file_size,
        "page_count": book.page_count,
        "read_count": book.read_count,
        "last_read_at": book.last_read_at,
        "is_deleted": book.is_deleted,
        "created_at": book.created_at,
        "updated_at": book.updated_at,
    }
