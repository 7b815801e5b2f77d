from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from printquota.core.config import PaymentConfig, get_payment_config
from printquota.db.store import BillingStore
from printquota.deps import Principal, get_current_student, get_store, require_gateway_auth
from printquota.services import payments as payments_service
from printquota.services.payments import GatewayNotification, TopUpReceipt, TopUpStatusView

router = APIRouter()


class CreateTopUpRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    amount: int = Field(gt=0)  # VND
    page_quantity: int = Field(gt=0)


@router.post("/topups", status_code=status.HTTP_201_CREATED, response_model=TopUpReceipt)
async def create_topup(
    body: CreateTopUpRequest,
    student: Principal = Depends(get_current_student),
    store: BillingStore = Depends(get_store),
    config: PaymentConfig = Depends(get_payment_config),
):
    """Create a pending top-up; the student pays by transfer with the returned memo."""
    return await payments_service.create_topup(store, config, student.student_id, body.amount, body.page_quantity)


@router.get("/topups/{transaction_id}", response_model=TopUpStatusView)
async def topup_status(
    transaction_id: UUID,
    student: Principal = Depends(get_current_student),
    store: BillingStore = Depends(get_store),
):
    return await payments_service.get_topup_status(store, student.student_id, transaction_id)


@router.post("/sepay-webhook", dependencies=[Depends(require_gateway_auth)])
async def sepay_webhook(
    body: GatewayNotification,
    store: BillingStore = Depends(get_store),
    config: PaymentConfig = Depends(get_payment_config),
):
    """SePay transfer notification: credits the matching top-up once; no-ops still answer 200."""
    outcome = await payments_service.handle_gateway_notification(store, config, body)
    return {"success": True, "outcome": outcome.value}
