from datetime import datetime
from uuid import UUID, uuid4

from beanie import Document
from pydantic import BaseModel, Field


class UploadedDocument(BaseModel):
    """A stored upload. Page count is never persisted; it is recomputed at billing time."""
    id: UUID = Field(default_factory=uuid4)
    student_id: str
    file_name: str
    file_type: str  # extension tag ("pdf", "docx") or MIME type
    file_size: int = Field(ge=0)
    storage_path: str  # storage key
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)


class UploadedDocumentRecord(Document, UploadedDocument):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "documents"
        indexes = [[("student_id", 1)]]
