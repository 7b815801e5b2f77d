from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from printquota.core.config import BillingConfig, get_billing_config
from printquota.db.store import BillingStore
from printquota.deps import Principal, get_store, require_admin
from printquota.services import balances as balances_service

router = APIRouter()


class SemesterAllocationRequest(BaseModel):
    semester: str = Field(min_length=1)
    student_ids: list[str] | None = None


@router.post("/semester-allocations")
async def allocate_semester_pages(
    body: SemesterAllocationRequest,
    admin: Principal = Depends(require_admin),
    store: BillingStore = Depends(get_store),
    config: BillingConfig = Depends(get_billing_config),
):
    """Grant the default page allotment for a semester; re-running is a no-op."""
    allocated = await balances_service.allocate_semester_pages(store, config, body.semester, body.student_ids)
    return {"allocated": allocated, "semester": body.semester.strip()}
