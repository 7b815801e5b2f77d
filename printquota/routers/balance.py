from fastapi import APIRouter, Depends

from printquota.db.store import BillingStore
from printquota.deps import Principal, get_current_student, get_store
from printquota.services import balances as balances_service

router = APIRouter()


@router.get("")
async def read_balance(
    student: Principal = Depends(get_current_student),
    store: BillingStore = Depends(get_store),
):
    balance = await balances_service.get_balance(store, student.student_id)
    return {
        "student_id": balance.student_id,
        "current_balance": balance.current_balance,
        "default_pages": balance.default_pages,
        "purchased_pages": balance.purchased_pages,
        "used_pages": balance.used_pages,
        "semester": balance.semester,
        "last_updated": balance.last_updated.isoformat(),
    }
