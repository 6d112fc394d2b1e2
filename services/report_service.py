# services/report_service.py
"""Aggregations behind the admin reports and public stats endpoints."""
from collections import Counter
from datetime import timedelta
from typing import Dict, Any, List

from sqlalchemy import func
from sqlmodel import Session, select

from core.errors import ValidationError
from models.models import (
    Book, BookStatus, Category, ReadingSession, User, UserRole, UserStatus, utc_now,
)

REPORT_TYPES = ("overview", "users", "books", "reading")


def _count(session: Session, query) -> int:
    return session.exec(query).one()


def _daily_trend(timestamps: List, days: int) -> List[Dict[str, Any]]:
    start = (utc_now() - timedelta(days=days - 1)).date()
    counts = Counter(ts.date() for ts in timestamps if ts and ts.date() >= start)
    return [
        {"date": (start + timedelta(days=offset)).isoformat(), "count": counts.get(start + timedelta(days=offset), 0)}
        for offset in range(days)
    ]


def public_stats(session: Session) -> Dict[str, int]:
    return {
        "totalBooks": _count(session, select(func.count(Book.id)).where(
            Book.is_deleted == False, Book.status == BookStatus.PUBLISHED.value)),  # noqa: E712
        "totalCategories": _count(session, select(func.count(Category.id)).where(
            Category.is_deleted == False, Category.is_active == True)),  # noqa: E712
        "totalUsers": _count(session, select(func.count(User.id)).where(User.status == UserStatus.ACTIVE.value)),
        "totalReads": _count(session, select(func.coalesce(func.sum(Book.read_count), 0)).where(Book.is_deleted == False)),  # noqa: E712
    }


def overview_report(session: Session, days: int) -> Dict[str, Any]:
    since = utc_now() - timedelta(days=days)
    top_books = session.exec(
        select(Book).where(Book.is_deleted == False).order_by(Book.read_count.desc()).limit(5)  # noqa: E712
    ).all()
    recent_users = session.exec(select(User).order_by(User.created_at.desc()).limit(5)).all()
    return {
        "totals": {
            "users": _count(session, select(func.count(User.id))),
            "activeUsers": _count(session, select(func.count(User.id)).where(User.status == UserStatus.ACTIVE.value)),
            "books": _count(session, select(func.count(Book.id)).where(Book.is_deleted == False)),  # noqa: E712
            "categories": _count(session, select(func.count(Category.id)).where(Category.is_deleted == False)),  # noqa: E712
        },
        "period": {
            "days": days,
            "newUsers": _count(session, select(func.count(User.id)).where(User.created_at >= since)),
            "newBooks": _count(session, select(func.count(Book.id)).where(Book.created_at >= since)),
            "readingSessions": _count(session, select(func.count(ReadingSession.id)).where(ReadingSession.last_accessed_at >= since)),
        },
        "topBooks": [{"id": b.id, "title": b.title, "author": b.author, "readCount": b.read_count} for b in top_books],
        "recentUsers": [{"id": u.id, "name": u.name, "email": u.email, "createdAt": u.created_at.isoformat()} for u in recent_users],
    }


def users_report(session: Session, days: int) -> Dict[str, Any]:
    users = session.exec(select(User)).all()
    now = utc_now()
    soon = now + timedelta(days=7)
    expiring = [u for u in users if u.expiry_date and now < u.expiry_date <= soon]
    return {
        "byStatus": dict(Counter(u.status for u in users)),
        "byRole": dict(Counter(u.role for u in users)),
        "registrationTrend": _daily_trend([u.created_at for u in users], days),
        "expiringSoon": [{"id": u.id, "email": u.email, "expiryDate": u.expiry_date.isoformat()} for u in expiring],
        "admins": sum(1 for u in users if u.role == UserRole.ADMIN.value),
    }


def books_report(session: Session, days: int) -> Dict[str, Any]:
    books = session.exec(select(Book).where(Book.is_deleted == False)).all()  # noqa: E712
    categories = session.exec(select(Category).where(Category.is_deleted == False)).all()  # noqa: E712
    return {
        "byStatus": dict(Counter(b.status for b in books)),
        "byCategory": [{"id": c.id, "name": c.name, "bookCount": c.book_count} for c in categories],
        "additionTrend": _daily_trend([b.created_at for b in books], days),
        "mostRead": [
            {"id": b.id, "title": b.title, "readCount": b.read_count}
            for b in sorted(books, key=lambda b: b.read_count, reverse=True)[:10]
        ],
    }


def reading_report(session: Session, days: int) -> Dict[str, Any]:
    since = utc_now() - timedelta(days=days)
    sessions = session.exec(select(ReadingSession).where(ReadingSession.last_accessed_at >= since)).all()
    completed = [s for s in sessions if s.completed_at]
    return {
        "sessions": len(sessions),
        "completed": len(completed),
        "activeReaders": len({s.user_id for s in sessions}),
        "averageProgress": round(sum(s.progress_percentage for s in sessions) / len(sessions), 2) if sessions else 0,
        "totalReadingMinutes": sum(s.total_reading_time for s in sessions),
        "activityTrend": _daily_trend([s.last_accessed_at for s in sessions], days),
    }


def build_report(session: Session, report_type: str, days: int) -> Dict[str, Any]:
    builders = {
        "overview": overview_report,
        "users": users_report,
        "books": books_report,
        "reading": reading_report,
    }
    if report_type not in builders:
        raise ValidationError(f"Invalid report type. Use one of: {', '.join(REPORT_TYPES)}")
    if days < 1 or days > 365:
        raise ValidationError("Period must be between 1 and 365 days")
    return {"type": report_type, "generatedAt": utc_now().isoformat(), "data": builders[report_type](session, days)}
