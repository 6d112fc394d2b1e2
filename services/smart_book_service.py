# services/smart_book_service.py
import io
import logging
from typing import List, Dict, Any, Optional

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from sqlmodel import Session, select

from core.errors import ValidationError
from models.models import Book, SmartBookContent, SmartBookStatus, utc_now
from services import drive_service

logger = logging.getLogger(__name__)


def parse_pdf(data: bytes) -> List[Dict[str, Any]]:
    """Extract text page by page. Page numbers start at 1."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for index, page in enumerate(reader.pages, start=1):
            text = page.extract_text() or ""
            pages.append({"page_number": index, "text": text.strip()})
        return pages
    except (PdfReadError, ValueError) as e:
        raise ValidationError(f"Could not parse PDF: {e}")


def normalize_pages(pages: List[Dict[str, Any]], editor_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Coerce page numbers to ints, sort them and stamp the editor."""
    now = utc_now().isoformat()
    normalized = []
    for position, page in enumerate(pages, start=1):
        try:
            number = int(page.get("page_number") or position)
        except (TypeError, ValueError):
            number = position
        normalized.append({
            "page_number": number,
            "text": str(page.get("text") or ""),
            "updated_by": editor_id,
            "updated_at": now,
        })
    normalized.sort(key=lambda p: p["page_number"])
    return normalized


def get_content(session: Session, book_id: int) -> Optional[SmartBookContent]:
    return session.exec(select(SmartBookContent).where(SmartBookContent.book_id == book_id)).first()


def save_pages(session: Session, book: Book, pages: List[Dict[str, Any]], editor_id: Optional[int]) -> SmartBookContent:
    """Upsert the smart content for a book and mark it parsed."""
    content = get_content(session, book.id)
    if not content:
        content = SmartBookContent(book_id=book.id)

    content.pages = normalize_pages(pages, editor_id)
    content.status = SmartBookStatus.PARSED.value
    content.last_edited_by_id = editor_id
    content.last_edited_at = utc_now()
    content.updated_at = utc_now()

    if content.pages:
        book.page_count = len(content.pages)
        session.add(book)

    session.add(content)
    session.commit()
    session.refresh(content)
    return content


def parse_book(session: Session, book: Book, editor_id: Optional[int]) -> SmartBookContent:
    data = drive_service.download_file(book.drive_file_id)
    pages = parse_pdf(data)
    logger.info(f"📖 Parsed {len(pages)} pages for book {book.id}")
    return save_pages(session, book, pages, editor_id)
