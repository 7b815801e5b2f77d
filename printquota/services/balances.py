"""Balance reads and per-semester page allotments."""

from printquota.core.config import BillingConfig
from printquota.core.exceptions import BadRequestError, NotFoundError
from printquota.core.logging import get_logger
from printquota.db.store import BillingStore
from printquota.models.page_balance import PageBalance

log = get_logger(__name__)


async def get_balance(store: BillingStore, student_id: str) -> PageBalance:
    balance = await store.get_balance(student_id)
    if not balance:
        raise NotFoundError("Page balance not found")
    return balance


async def allocate_semester_pages(
    store: BillingStore,
    config: BillingConfig,
    semester: str,
    student_ids: list[str] | None = None,
) -> int:
    """
    Grant `default_page_balance` pages for `semester` to the listed students, or to every
    existing balance when none are listed. A student is granted each semester at most once,
    even after later semesters, so re-running an allocation changes nothing. Returns the
    number allocated.
    """
    semester = semester.strip()
    if not semester:
        raise BadRequestError("Semester is required")
    pages = config.default_page_balance
    if pages <= 0:
        return 0

    allocated = 0
    async with store.unit_of_work() as uow:
        targets = list(dict.fromkeys(student_ids)) if student_ids else await uow.list_balance_student_ids()
        for student_id in targets:
            if await uow.allocate_semester(student_id, pages, semester):
                allocated += 1
        if allocated:
            await uow.log_event(
                None,
                "semester_pages_allocated",
                "page_balance",
                None,
                {"semester": semester, "pages": pages, "allocated": allocated},
            )

    log.info("semester_pages_allocated", semester=semester, pages=pages, allocated=allocated)
    return allocated
