from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from beanie import Document
from pydantic import BaseModel, Field


class TopUpStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class TopUpTransaction(BaseModel):
    """Pending top-up; reconciliation moves it to COMPLETED at most once."""
    id: UUID = Field(default_factory=uuid4)
    student_id: str
    amount: int = Field(ge=0)  # currency units (VND)
    pages_added: int = Field(gt=0)
    status: TopUpStatus = TopUpStatus.PENDING
    payment_method: str | None = None
    payment_ref: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None


class TopUpRecord(Document, TopUpTransaction):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "topup_transactions"
        indexes = [
            [("student_id", 1), ("created_at", -1)],
            [("status", 1)],
        ]
