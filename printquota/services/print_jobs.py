"""Print-job creation: page count, cost quote and the atomic balance debit."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from printquota.core.config import BillingConfig
from printquota.core.exceptions import ConflictError, InsufficientBalanceError, NotFoundError
from printquota.core.logging import get_logger
from printquota.db.store import BillingStore
from printquota.models.print_job import (
    Orientation,
    PaperSize,
    PrintConfig,
    PrintJob,
    PrintJobStatus,
    PrintSide,
)
from printquota.services import billing
from printquota.services.page_counter import PageCounter

log = get_logger(__name__)


class PrintJobRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    printer_id: UUID
    document_id: UUID
    copies: int = Field(default=1, gt=0)
    paper_size: PaperSize = PaperSize.A4
    side: PrintSide = PrintSide.ONE_SIDED
    orientation: Orientation = Orientation.PORTRAIT
    page_range: str | None = None

    @field_validator("page_range")
    @classmethod
    def blank_range_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class PrintJobReceipt(BaseModel):
    job_id: UUID
    status: PrintJobStatus
    total_cost: int
    total_pages: int


async def create_print_job(
    store: BillingStore,
    page_counter: PageCounter,
    config: BillingConfig,
    student_id: str,
    request: PrintJobRequest,
) -> PrintJobReceipt:
    """
    Create a PENDING job and debit its cost from the student's balance, all or nothing.
    Printer, document and page count are resolved before the unit of work opens, so no
    transaction is held across document conversion.
    """
    printer = await store.get_printer(request.printer_id)
    if not printer:
        raise NotFoundError("Printer not found")
    if not printer.accepts_jobs:
        raise ConflictError(
            "Printer is not accepting jobs",
            details={"printer_id": str(printer.id), "status": printer.status.value, "is_active": printer.is_active},
        )

    document = await store.get_student_document(student_id, request.document_id)
    if not document:
        raise NotFoundError("Document not found")

    page_count = await page_counter.count(document, allow_estimate=config.estimate_on_conversion_failure)
    cost_quote = billing.quote(
        page_count,
        copies=request.copies,
        paper_size=request.paper_size,
        side=request.side,
        page_range=request.page_range,
        a3_to_a4_ratio=config.a3_to_a4_ratio,
    )

    print_config = PrintConfig(
        paper_size=request.paper_size,
        copies=request.copies,
        is_double_sided=request.side == PrintSide.DOUBLE_SIDED,
        orientation=request.orientation,
        page_range=request.page_range,
    )
    job = PrintJob(
        student_id=student_id,
        printer_id=printer.id,
        document_id=document.id,
        config_id=print_config.id,
        document_pages=page_count,
        total_pages=cost_quote.effective_pages,
        cost=cost_quote.cost,
    )

    async with store.unit_of_work() as uow:
        balance = await uow.get_balance(student_id)
        if not balance:
            raise NotFoundError("Page balance not found")
        if balance.current_balance < cost_quote.cost:
            raise InsufficientBalanceError(cost_quote.cost, balance.current_balance)

        await uow.insert_print_job(print_config, job)
        debited = await uow.debit_balance(student_id, cost_quote.cost)
        if debited is None:
            # a concurrent debit spent the balance after our read
            current = await uow.get_balance(student_id)
            raise InsufficientBalanceError(cost_quote.cost, current.current_balance if current else 0)
        await uow.log_event(
            student_id,
            "print_job_created",
            "print_job",
            str(job.id),
            {
                "printer_id": str(printer.id),
                "document_id": str(document.id),
                "document_pages": page_count,
                "total_pages": cost_quote.effective_pages,
                "cost": cost_quote.cost,
                "balance_after": debited.current_balance,
            },
        )

    log.info(
        "print_job_created",
        job_id=str(job.id),
        student_id=student_id,
        cost=cost_quote.cost,
        balance_after=debited.current_balance,
    )
    return PrintJobReceipt(
        job_id=job.id,
        status=job.status,
        total_cost=cost_quote.cost,
        total_pages=cost_quote.effective_pages,
    )
