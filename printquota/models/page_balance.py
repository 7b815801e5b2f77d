from datetime import datetime
from uuid import UUID, uuid4

import pymongo
from beanie import Document
from pydantic import BaseModel, Field


class PageBalance(BaseModel):
    """current_balance = default_pages + purchased_pages - used_pages, kept incrementally."""
    id: UUID = Field(default_factory=uuid4)
    student_id: str
    current_balance: int = 0
    default_pages: int = 0
    purchased_pages: int = 0
    used_pages: int = 0
    semester: str | None = None  # most recent allocation
    allocated_semesters: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.utcnow)


class PageBalanceRecord(Document, PageBalance):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "page_balances"
        indexes = [
            pymongo.IndexModel([("student_id", pymongo.ASCENDING)], unique=True),
        ]
