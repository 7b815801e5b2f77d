from fastapi import APIRouter, Depends, status

from printquota.core.config import BillingConfig, get_billing_config
from printquota.db.store import BillingStore
from printquota.deps import Principal, get_current_student, get_page_counter, get_store
from printquota.services import print_jobs as print_jobs_service
from printquota.services.page_counter import PageCounter
from printquota.services.print_jobs import PrintJobReceipt, PrintJobRequest

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PrintJobReceipt)
async def create_print_job(
    body: PrintJobRequest,
    student: Principal = Depends(get_current_student),
    store: BillingStore = Depends(get_store),
    page_counter: PageCounter = Depends(get_page_counter),
    config: BillingConfig = Depends(get_billing_config),
):
    """Create a print job and debit its cost; 402 when the balance is short."""
    return await print_jobs_service.create_print_job(store, page_counter, config, student.student_id, body)
