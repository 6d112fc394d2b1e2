# catalog_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class BookStatus(str, Enum):
    PUBLISHED = "published"
    DRAFT = "draft"
    ARCHIVED = "archived"


class BookAction(str, Enum):
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    ARCHIVE = "archive"
    REFRESH_THUMBNAIL = "refresh_thumbnail"


# ---------------------------
# Category
# ---------------------------
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    color: str = Field(default="#3B82F6", pattern=HEX_COLOR)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    is_active: Optional[bool] = None


class CategoryRead(BaseModel):
    id: int
    name: str
    description: str
    color: str
    is_active: bool
    book_count: int
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CategorySummary(BaseModel):
    id: int
    name: str
    color: str

    model_config = ConfigDict(from_attributes=True)


class CategoryListResponse(BaseModel):
    categories: List[CategoryRead]
    total: int
    page: int
    limit: int
    pages: int


# ---------------------------
# Book
# ---------------------------
class BookImage(BaseModel):
    url: str
    public_id: Optional[str] = None
    alt: Optional[str] = None


class BookCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    category_ids: List[int] = Field(..., min_length=1, max_length=5)
    drive_url: str = Field(..., min_length=1)
    images: List[BookImage] = Field(default=[], max_length=5)
    status: BookStatus = BookStatus.PUBLISHED


class BookUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    author: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    category_ids: Optional[List[int]] = Field(default=None, min_length=1, max_length=5)
    drive_url: Optional[str] = None
    images: Optional[List[BookImage]] = Field(default=None, max_length=5)
    status: Optional[BookStatus] = None
    action: Optional[BookAction] = None


class BookRead(BaseModel):
    id: int
    title: str
    author: str
    description: str
    categories: List[CategorySummary] = []
    drive_url: str
    drive_file_id: str
    embed_url: str
    images: List[Dict[str, Any]] = []
    thumbnail_url: Optional[str] = None
    status: str
    published_at: Optional[datetime] = None
    file_size: Optional[int] = None
    page_count: Optional[int] = None
    read_count: int
    last_read_at: Optional[datetime] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class BookListResponse(BaseModel):
    books: List[BookRead]
    total: int
    page: int
    limit: int
    pages: int


# ---------------------------
# Bulk import
# ---------------------------
class CategoryImportRow(BaseModel):
    name: str
    description: str = ""
    color: str = "#3B82F6"


class BookImportRow(BaseModel):
    title: str
    author: str
    description: str = ""
    drive_url: str
    categories: List[str] = []
    status: BookStatus = BookStatus.PUBLISHED


class ImportResult(BaseModel):
    created: int
    failed: int
    errors: List[Dict[str, Any]] = []


# ---------------------------
# Reading progress
# ---------------------------
class ReadingProgressUpdate(BaseModel):
    current_page: int = Field(..., ge=1)
    total_pages: Optional[int] = Field(default=None, ge=1)
    minutes: int = Field(default=0, ge=0, le=600)


class ReadingSessionRead(BaseModel):
    book_id: int
    current_page: int
    total_pages: Optional[int] = None
    progress_percentage: float
    total_reading_time: int
    started_at: datetime
    last_accessed_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
