"""Top-ups paid by bank transfer: pending transaction, VietQR payment URL, SePay webhook reconciliation."""

import re
from datetime import datetime
from enum import Enum
from urllib.parse import quote
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from printquota.core.config import PaymentConfig
from printquota.core.exceptions import BadRequestError, NotFoundError
from printquota.core.logging import get_logger
from printquota.db.store import BillingStore
from printquota.models.topup_transaction import TopUpStatus, TopUpTransaction

log = get_logger(__name__)

# Banks may strip the hyphens from the memo; both forms must be a whole hex run.
_UUID_HYPHENATED = re.compile(
    r"(?<![0-9a-f])[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(?![0-9a-f])",
    re.IGNORECASE,
)
_UUID_BARE = re.compile(r"(?<![0-9a-f])[0-9a-f]{32}(?![0-9a-f])", re.IGNORECASE)


class TopUpReceipt(BaseModel):
    transaction_id: UUID
    payment_url: str
    memo: str
    amount: int
    page_quantity: int


class TopUpStatusView(BaseModel):
    transaction_id: UUID
    status: TopUpStatus
    pages: int
    completed_at: datetime | None = None


class GatewayNotification(BaseModel):
    """SePay transfer notification; only the fields reconciliation reads are required."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: int | str | None = None
    gateway: str | None = None
    transaction_date: str | None = None
    account_number: str | None = None
    transfer_type: str
    transfer_amount: float = Field(ge=0)
    content: str | None = None
    description: str | None = None
    reference_code: str | None = None


class ReconciliationOutcome(str, Enum):
    IGNORED_DIRECTION = "IGNORED_DIRECTION"
    NO_REFERENCE = "NO_REFERENCE"
    UNKNOWN_TRANSACTION = "UNKNOWN_TRANSACTION"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    NOT_PENDING = "NOT_PENDING"
    INSUFFICIENT_AMOUNT = "INSUFFICIENT_AMOUNT"
    COMPLETED = "COMPLETED"


def extract_transaction_id(*texts: str | None) -> UUID | None:
    """First hyphenated UUID in any text, else the first bare 32-hex token; canonical form."""
    for pattern in (_UUID_HYPHENATED, _UUID_BARE):
        for text in texts:
            if not text:
                continue
            match = pattern.search(text)
            if match:
                return UUID(match.group(0))
    return None


def build_payment_url(config: PaymentConfig, amount: int, memo: str) -> str:
    base = config.qr_base_url.rstrip("/")
    return (
        f"{base}/{config.bank_id}-{config.account_no}-{config.qr_template}.png"
        f"?amount={amount}&addInfo={quote(memo, safe='')}"
    )


async def create_topup(
    store: BillingStore,
    config: PaymentConfig,
    student_id: str,
    amount: int,
    page_quantity: int,
) -> TopUpReceipt:
    if not config.min_amount <= amount <= config.max_amount:
        raise BadRequestError(
            f"Amount must be between {config.min_amount} and {config.max_amount}",
            details={"min_amount": config.min_amount, "max_amount": config.max_amount},
        )
    if not config.min_pages <= page_quantity <= config.max_pages:
        raise BadRequestError(
            f"Page quantity must be between {config.min_pages} and {config.max_pages}",
            details={"min_pages": config.min_pages, "max_pages": config.max_pages},
        )

    topup = TopUpTransaction(student_id=student_id, amount=amount, pages_added=page_quantity)
    await store.insert_topup(topup)
    memo = f"{config.memo_tag} {topup.id}"
    log.info("topup_created", transaction_id=str(topup.id), student_id=student_id, amount=amount, pages=page_quantity)
    return TopUpReceipt(
        transaction_id=topup.id,
        payment_url=build_payment_url(config, amount, memo),
        memo=memo,
        amount=amount,
        page_quantity=page_quantity,
    )


async def get_topup_status(store: BillingStore, student_id: str, transaction_id: UUID) -> TopUpStatusView:
    topup = await store.get_topup(transaction_id)
    if not topup or topup.student_id != student_id:
        raise NotFoundError("Transaction not found")
    return TopUpStatusView(
        transaction_id=topup.id,
        status=topup.status,
        pages=topup.pages_added,
        completed_at=topup.completed_at,
    )


async def handle_gateway_notification(
    store: BillingStore,
    config: PaymentConfig,
    notification: GatewayNotification,
) -> ReconciliationOutcome:
    """
    Credit the matching pending top-up exactly once.
    Every no-op (wrong direction, unknown or settled transaction, short payment) is an
    outcome, not an error, so the gateway never retries a delivery that was understood.
    """
    if notification.transfer_type.strip().lower() != "in":
        log.info("webhook_ignored", reason="direction", transfer_type=notification.transfer_type)
        return ReconciliationOutcome.IGNORED_DIRECTION

    transaction_id = extract_transaction_id(notification.content, notification.description)
    if transaction_id is None:
        log.info("webhook_ignored", reason="no_reference", gateway_id=notification.id)
        return ReconciliationOutcome.NO_REFERENCE

    topup = await store.get_topup(transaction_id)
    if not topup:
        log.warning("webhook_ignored", reason="unknown_transaction", transaction_id=str(transaction_id))
        return ReconciliationOutcome.UNKNOWN_TRANSACTION
    if topup.status == TopUpStatus.COMPLETED:
        log.info("webhook_ignored", reason="already_completed", transaction_id=str(transaction_id))
        return ReconciliationOutcome.ALREADY_COMPLETED
    if topup.status != TopUpStatus.PENDING:
        log.info("webhook_ignored", reason="not_pending", transaction_id=str(transaction_id), status=topup.status.value)
        return ReconciliationOutcome.NOT_PENDING
    if notification.transfer_amount < topup.amount:
        log.warning(
            "webhook_ignored",
            reason="insufficient_amount",
            transaction_id=str(transaction_id),
            expected=topup.amount,
            received=notification.transfer_amount,
        )
        return ReconciliationOutcome.INSUFFICIENT_AMOUNT

    payment_ref = notification.reference_code or (str(notification.id) if notification.id is not None else None)
    async with store.unit_of_work() as uow:
        completed = await uow.complete_topup(transaction_id, config.payment_method, payment_ref)
        if completed is None:
            # concurrent delivery completed it between our read and the transition
            log.info("webhook_ignored", reason="already_completed", transaction_id=str(transaction_id))
            return ReconciliationOutcome.ALREADY_COMPLETED
        balance = await uow.credit_balance(completed.student_id, completed.pages_added)
        await uow.log_event(
            completed.student_id,
            "topup_completed",
            "topup_transaction",
            str(transaction_id),
            {
                "amount": completed.amount,
                "transfer_amount": notification.transfer_amount,
                "pages_added": completed.pages_added,
                "payment_ref": payment_ref,
                "balance_after": balance.current_balance,
            },
        )

    log.info(
        "topup_completed",
        transaction_id=str(transaction_id),
        student_id=completed.student_id,
        pages=completed.pages_added,
        balance_after=balance.current_balance,
    )
    return ReconciliationOutcome.COMPLETED
