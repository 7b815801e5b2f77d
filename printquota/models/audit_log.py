from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    """Written in the same transaction as the balance change it records."""

    user_id: str | None = None  # None for admin batch events
    event_type: str  # print_job_created, topup_completed, semester_pages_allocated
    entity_type: str
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
            [("event_type", 1), ("created_at", -1)],
        ]
