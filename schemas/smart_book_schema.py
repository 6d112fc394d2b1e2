# smart_book_schema.py
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


class SmartPage(BaseModel):
    page_number: Optional[int] = None
    text: str = ""
    updated_by: Optional[int] = None
    updated_at: Optional[str] = None


class SmartBookUpdate(BaseModel):
    pages: List[SmartPage]


class SmartBookRead(BaseModel):
    book_id: int
    status: str
    pages: List[SmartPage] = []
    last_edited_by_id: Optional[int] = None
    last_edited_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
