from enum import Enum
from uuid import UUID, uuid4

from beanie import Document
from pydantic import BaseModel, Field


class PrinterStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"
    MAINTENANCE = "MAINTENANCE"
    ERROR = "ERROR"


class Printer(BaseModel):
    """Managed by printer administration; read-only here."""
    id: UUID = Field(default_factory=uuid4)
    name: str = ""
    status: PrinterStatus = PrinterStatus.OFFLINE
    is_active: bool = True

    @property
    def accepts_jobs(self) -> bool:
        return self.is_active and self.status == PrinterStatus.AVAILABLE


class PrinterRecord(Document, Printer):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "printers"
