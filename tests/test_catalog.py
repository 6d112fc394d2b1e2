"""
Catalog tests: category book_count upkeep, delete rules and book CRUD
through the admin API.
"""
import pytest
from sqlmodel import Session, select

from models.models import Book, BookCategoryLink, Category, ReadingSession
from routes.books import get_or_create_reading_session

DRIVE_IDS = ["1AAAAAAAAAAAAAAAAAAAAA", "1BBBBBBBBBBBBBBBBBBBBB", "1CCCCCCCCCCCCCCCCCCCCC", "1DDDDDDDDDDDDDDDDDDDDD"]


def _category(client, headers, name="Fiction"):
    response = client.post("/api/admin/categories", json={"name": name}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


def _book(client, headers, category_ids, drive_id, **fields):
    payload = {
        "title": fields.pop("title", "A Book"),
        "author": "An Author",
        "category_ids": category_ids,
        "drive_url": f"https://drive.google.com/file/d/{drive_id}/view?usp=sharing",
        **fields,
    }
    return client.post("/api/admin/books", json=payload, headers=headers)


def _book_count(session, category_id):
    session.expire_all()
    return session.get(Category, category_id).book_count


@pytest.fixture
def fiction(client, admin_headers):
    return _category(client, admin_headers)


# ----------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------
def test_duplicate_category_name_is_case_insensitive(client, admin_headers, fiction):
    response = client.post("/api/admin/categories", json={"name": "  FICTION "}, headers=admin_headers)
    assert response.status_code == 409


def test_book_count_follows_create_update_and_delete(client, session, admin_headers, fiction):
    history = _category(client, admin_headers, "History")

    book = _book(client, admin_headers, [fiction], DRIVE_IDS[0]).json()
    _book(client, admin_headers, [fiction, history], DRIVE_IDS[1])
    assert _book_count(session, fiction) == 2
    assert _book_count(session, history) == 1

    client.put(f"/api/admin/books/{book['id']}", json={"category_ids": [history]}, headers=admin_headers)
    assert _book_count(session, fiction) == 1
    assert _book_count(session, history) == 2

    client.delete(f"/api/admin/books/{book['id']}", headers=admin_headers)
    assert _book_count(session, history) == 1
    assert client.get(f"/api/admin/books/{book['id']}", headers=admin_headers).json()["is_deleted"] is True

    client.post(f"/api/admin/books/{book['id']}/restore", headers=admin_headers)
    assert _book_count(session, history) == 2


def test_category_with_books_cannot_be_deleted(client, session, admin_headers, fiction):
    for drive_id in DRIVE_IDS[:3]:
        assert _book(client, admin_headers, [fiction], drive_id).status_code == 201

    response = client.delete(f"/api/admin/categories/{fiction}", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["book_count"] == 3
    session.expire_all()
    assert not session.get(Category, fiction).is_deleted


def test_force_delete_clears_book_references(client, session, admin_headers, fiction):
    other = _category(client, admin_headers, "Other")
    book = _book(client, admin_headers, [fiction, other], DRIVE_IDS[0]).json()

    response = client.delete(f"/api/admin/categories/{fiction}?force=true", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["books_updated"] == 1
    session.expire_all()
    assert session.get(Category, fiction) is None
    assert session.exec(select(BookCategoryLink).where(BookCategoryLink.category_id == fiction)).all() == []

    remaining = client.get(f"/api/admin/books/{book['id']}", headers=admin_headers).json()
    assert [c["id"] for c in remaining["categories"]] == [other]


def test_empty_category_soft_delete_and_restore(client, session, admin_headers, fiction):
    assert client.delete(f"/api/admin/categories/{fiction}", headers=admin_headers).status_code == 200

    # admins can still open a deleted category; readers no longer see it
    deleted = client.get(f"/api/admin/categories/{fiction}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["is_deleted"] is True
    assert client.get("/api/public/categories").json() == []
    assert client.get("/api/admin/categories", headers=admin_headers).json()["categories"] == []

    listed = client.get("/api/admin/categories?include_deleted=true", headers=admin_headers).json()
    assert [c["id"] for c in listed["categories"]] == [fiction]

    restored = client.post(f"/api/admin/categories/{fiction}/restore", headers=admin_headers)
    assert restored.status_code == 200
    assert restored.json()["is_deleted"] is False


def test_invalid_sort_lists_allowed_values(client, admin_headers):
    response = client.get("/api/admin/categories?sort=bogus", headers=admin_headers)
    assert response.status_code == 400
    assert "name" in response.json()["allowed"]


# ----------------------------------------------------------------------
# Books
# ----------------------------------------------------------------------
def test_duplicate_drive_file_is_409(client, admin_headers, fiction):
    assert _book(client, admin_headers, [fiction], DRIVE_IDS[0]).status_code == 201

    response = _book(client, admin_headers, [fiction], DRIVE_IDS[0], title="Copy")
    assert response.status_code == 409


def test_book_create_normalizes_drive_url(client, admin_headers, fiction):
    body = _book(client, admin_headers, [fiction], DRIVE_IDS[0]).json()
    assert body["drive_file_id"] == DRIVE_IDS[0]
    assert body["drive_url"] == f"https://drive.google.com/file/d/{DRIVE_IDS[0]}/view"
    assert body["embed_url"].endswith("/preview")
    assert body["status"] == "published"
    assert body["published_at"]


def test_book_requires_valid_drive_url_and_categories(client, admin_headers, fiction):
    not_drive = _book(client, admin_headers, [fiction], DRIVE_IDS[0], drive_url="https://example.com/book.pdf")
    assert not_drive.status_code == 400
    assert _book(client, admin_headers, [999], DRIVE_IDS[0]).status_code == 400


def test_draft_books_are_hidden_from_readers(client, admin_headers, reader_headers, fiction):
    _book(client, admin_headers, [fiction], DRIVE_IDS[0], title="Visible")
    _book(client, admin_headers, [fiction], DRIVE_IDS[1], title="Hidden", status="draft")

    public = client.get("/api/public/books").json()
    assert [b["title"] for b in public["books"]] == ["Visible"]

    reader_view = client.get("/api/books", headers=reader_headers).json()
    assert reader_view["total"] == 1


def test_opening_a_book_tracks_reading(client, session, admin_headers, reader_headers, fiction):
    book = _book(client, admin_headers, [fiction], DRIVE_IDS[0]).json()

    opened = client.get(f"/api/books/{book['id']}", headers=reader_headers)
    assert opened.status_code == 200
    assert opened.json()["book"]["read_count"] == 1

    progress = client.put(
        f"/api/books/{book['id']}/progress",
        json={"current_page": 96, "total_pages": 100, "minutes": 12},
        headers=reader_headers,
    )
    assert progress.status_code == 200
    assert progress.json()["progress_percentage"] == 96.0
    assert progress.json()["completed_at"] is not None


def test_bulk_import_reports_row_errors(client, admin_headers, fiction):
    rows = [
        {"title": "One", "author": "A", "drive_url": DRIVE_IDS[0], "categories": ["Fiction"]},
        {"title": "Two", "author": "B", "drive_url": DRIVE_IDS[1], "categories": ["Missing"]},
    ]
    response = client.post("/api/admin/books/bulk-import", json=rows, headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 1
    assert len(body["errors"]) == 1


class _NoRow:
    def first(self):
        return None


def test_concurrent_first_open_reuses_the_existing_row(engine, session, reader, monkeypatch):
    book = Book(title="Raced", author="A", drive_url=DRIVE_IDS[3], drive_file_id=DRIVE_IDS[3])
    session.add(book)
    session.commit()
    session.refresh(book)

    # another request opens the book first
    with Session(engine) as other:
        other.add(ReadingSession(user_id=reader.id, book_id=book.id, current_page=5))
        other.commit()

    real_exec = session.exec
    lookups = []

    def first_lookup_misses(statement, *args, **kwargs):
        lookups.append(statement)
        if len(lookups) == 1:
            return _NoRow()
        return real_exec(statement, *args, **kwargs)

    monkeypatch.setattr(session, "exec", first_lookup_misses)
    reading = get_or_create_reading_session(session, reader.id, book)
    monkeypatch.undo()

    assert reading.current_page == 5
    assert len(session.exec(select(ReadingSession)).all()) == 1
