from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from beanie import Document
from pydantic import BaseModel, Field


class PaperSize(str, Enum):
    A4 = "A4"  # standard
    A3 = "A3"  # large, billed by the A3/A4 ratio


class PrintSide(str, Enum):
    ONE_SIDED = "ONE_SIDED"
    DOUBLE_SIDED = "DOUBLE_SIDED"


class Orientation(str, Enum):
    PORTRAIT = "PORTRAIT"
    LANDSCAPE = "LANDSCAPE"


class PrintJobStatus(str, Enum):
    PENDING = "PENDING"
    PRINTING = "PRINTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PrintConfig(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    paper_size: PaperSize = PaperSize.A4
    copies: int = Field(default=1, gt=0)
    is_double_sided: bool = False
    orientation: Orientation = Orientation.PORTRAIT
    page_range: str | None = None


class PrintJob(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    student_id: str
    printer_id: UUID
    document_id: UUID
    config_id: UUID
    document_pages: int = Field(gt=0)  # detected page count
    total_pages: int = Field(gt=0)  # pages selected for printing, billed per copy
    cost: int = Field(gt=0)
    status: PrintJobStatus = PrintJobStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PrintConfigRecord(Document, PrintConfig):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "print_configs"


class PrintJobRecord(Document, PrintJob):
    id: UUID = Field(default_factory=uuid4)

    class Settings:
        name = "print_jobs"
        indexes = [
            [("student_id", 1), ("created_at", -1)],
            [("printer_id", 1), ("status", 1)],
        ]
