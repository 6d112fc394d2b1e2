# routes/admin_smart_book.py
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from core.database import get_session
from core.errors import NotFoundError
from core.security import get_current_admin
from models.models import Book, User
from schemas.smart_book_schema import SmartBookRead, SmartBookUpdate
from services import drive_service, smart_book_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin Smart Book"])


def _get_book(session: Session, book_id: int) -> Book:
    book = session.get(Book, book_id)
    if not book or book.is_deleted:
        raise NotFoundError("Book not found")
    return book


@router.post("/parse/{book_id}", response_model=SmartBookRead)
def parse_book(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    """Download the book's PDF from Drive and extract page texts."""
    book = _get_book(session, book_id)
    return smart_book_service.parse_book(session, book, admin.id)


@router.get("/pdf/{book_id}")
def proxy_pdf(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = _get_book(session, book_id)
    data = drive_service.download_file(book.drive_file_id)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Cache-Control": "no-store"},
    )


@router.get("/{book_id}", response_model=SmartBookRead)
def get_smart_book(
    book_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    _get_book(session, book_id)
    content = smart_book_service.get_content(session, book_id)
    if not content:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return content


@router.put("/{book_id}", response_model=SmartBookRead)
def update_smart_book(
    book_id: int,
    payload: SmartBookUpdate,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    book = _get_book(session, book_id)
    pages = [page.model_dump() for page in payload.pages]
    content = smart_book_service.save_pages(session, book, pages, admin.id)
    logger.info(f"✏️ Smart content for book {book_id} edited by {admin.email}")
    return content
