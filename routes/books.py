# routes/books.py
from typing import List, Optional
import logging
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import NotFoundError
from core.security import get_current_user
from models.models import Book, BookCategoryLink, BookStatus, Category, ReadingSession, User, utc_now
from schemas.catalog_schema import BookListResponse, CategoryRead, ReadingProgressUpdate, ReadingSessionRead
from services import catalog_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Books"])


def published_books_query(search: Optional[str] = None, category_id: Optional[int] = None):
    """Non-deleted, published books; shared with the public catalog."""
    query = select(Book).where(Book.is_deleted == False, Book.status == BookStatus.PUBLISHED.value)  # noqa: E712
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(
            func.lower(Book.title).like(pattern),
            func.lower(Book.author).like(pattern),
            func.lower(Book.description).like(pattern),
        ))
    if category_id:
        query = query.join(BookCategoryLink, BookCategoryLink.book_id == Book.id).where(
            BookCategoryLink.category_id == category_id
        )
    return query


def paginate_books(session: Session, query, page: int, limit: int, sort: Optional[str]) -> dict:
    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    ordered = catalog_service.order_by(query, catalog_service.BOOK_SORTS, sort, "newest")
    books = session.exec(ordered.offset((page - 1) * limit).limit(limit)).all()
    return {
        "books": [catalog_service.serialize_book(b) for b in books],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


def active_categories(session: Session) -> List[Category]:
    return session.exec(
        select(Category)
        .where(Category.is_deleted == False, Category.is_active == True)  # noqa: E712
        .order_by(Category.name)
    ).all()


def _get_published(session: Session, book_id: int) -> Book:
    book = session.get(Book, book_id)
    if not book or book.is_deleted or book.status != BookStatus.PUBLISHED.value:
        raise NotFoundError("Book not found")
    return book


def get_or_create_reading_session(session: Session, user_id: int, book: Book) -> ReadingSession:
    """The reader's row for a book, inserted on first open.

    Two first opens can race on uq_reading_user_book; the loser rolls back
    and picks up the winner's row.
    """
    book_id = book.id
    query = select(ReadingSession).where(ReadingSession.user_id == user_id, ReadingSession.book_id == book_id)
    reading = session.exec(query).first()
    if reading:
        return reading

    session.add(ReadingSession(user_id=user_id, book_id=book_id, total_pages=book.page_count))
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info(f"🔁 Reading session for user {user_id} on book {book_id} already created")
    return session.exec(query).one()


# ----------------------------------------------------------------------
# ✅ Catalog for signed-in readers
# ----------------------------------------------------------------------
@router.get("/books", response_model=BookListResponse)
def list_books(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    sort: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return paginate_books(session, published_books_query(search, category_id), page, limit, sort)


@router.get("/books/{book_id}")
def read_book(
    book_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Open a book: counts the read and starts or resumes the reading session."""
    book = _get_published(session, book_id)

    reading = get_or_create_reading_session(session, current_user.id, book)
    reading.last_accessed_at = utc_now()

    book.read_count = (book.read_count or 0) + 1
    book.last_read_at = utc_now()
    session.add(book)
    session.add(reading)
    session.commit()
    session.refresh(book)
    session.refresh(reading)

    return {
        "book": catalog_service.serialize_book(book),
        "reading_session": ReadingSessionRead.model_validate(reading),
    }


@router.put("/books/{book_id}/progress", response_model=ReadingSessionRead)
def update_progress(
    book_id: int,
    payload: ReadingProgressUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    book = _get_published(session, book_id)
    reading = get_or_create_reading_session(session, current_user.id, book)

    reading.update_progress(payload.current_page, payload.total_pages, payload.minutes)
    session.add(reading)
    session.commit()
    session.refresh(reading)
    return reading


@router.get("/categories", response_model=List[CategoryRead])
def list_categories(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return active_categories(session)
