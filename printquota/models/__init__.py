from printquota.models.audit_log import AuditLog
from printquota.models.document import UploadedDocument, UploadedDocumentRecord
from printquota.models.page_balance import PageBalance, PageBalanceRecord
from printquota.models.print_job import (
    Orientation,
    PaperSize,
    PrintConfig,
    PrintConfigRecord,
    PrintJob,
    PrintJobRecord,
    PrintJobStatus,
    PrintSide,
)
from printquota.models.printer import Printer, PrinterRecord, PrinterStatus
from printquota.models.topup_transaction import TopUpRecord, TopUpStatus, TopUpTransaction

__all__ = [
    "AuditLog",
    "Orientation",
    "PageBalance",
    "PageBalanceRecord",
    "PaperSize",
    "PrintConfig",
    "PrintConfigRecord",
    "PrintJob",
    "PrintJobRecord",
    "PrintJobStatus",
    "PrintSide",
    "Printer",
    "PrinterRecord",
    "PrinterStatus",
    "TopUpRecord",
    "TopUpStatus",
    "TopUpTransaction",
    "UploadedDocument",
    "UploadedDocumentRecord",
]
