"""Billing persistence: the only code that reads or mutates balances, jobs and top-ups.

Services receive a `BillingStore` and do every financial mutation inside
`store.unit_of_work()`. Leaving the block normally commits; any exception
aborts, so no partial write is ever visible. A commit whose outcome is unknown
is re-sent, and reported as not retryable if it stays unknown.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID, uuid4

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from printquota.core import audit
from printquota.core.exceptions import StorageUnavailableError
from printquota.core.logging import get_logger
from printquota.models.document import UploadedDocument, UploadedDocumentRecord
from printquota.models.page_balance import PageBalance, PageBalanceRecord
from printquota.models.print_job import PrintConfig, PrintConfigRecord, PrintJob, PrintJobRecord
from printquota.models.printer import Printer, PrinterRecord
from printquota.models.topup_transaction import TopUpRecord, TopUpStatus, TopUpTransaction

log = get_logger(__name__)

UNKNOWN_COMMIT_RESULT = "UnknownTransactionCommitResult"


class UnitOfWork(ABC):
    """Operations that run inside one atomic storage transaction."""

    @abstractmethod
    async def get_balance(self, student_id: str) -> PageBalance | None: ...

    @abstractmethod
    async def debit_balance(self, student_id: str, pages: int) -> PageBalance | None:
        """Subtract `pages` only if current_balance >= pages; None when the condition fails."""
        ...

    @abstractmethod
    async def credit_balance(self, student_id: str, pages: int) -> PageBalance:
        """Add purchased pages, creating a zeroed balance row if the student has none."""
        ...

    @abstractmethod
    async def allocate_semester(self, student_id: str, pages: int, semester: str) -> bool:
        """Add the semester allotment unless `semester` was ever allocated to this student. True if applied."""
        ...

    @abstractmethod
    async def list_balance_student_ids(self) -> list[str]: ...

    @abstractmethod
    async def insert_print_job(self, config: PrintConfig, job: PrintJob) -> None: ...

    @abstractmethod
    async def complete_topup(
        self, transaction_id: UUID, payment_method: str, payment_ref: str | None
    ) -> TopUpTransaction | None:
        """PENDING -> COMPLETED; None if the transaction was not pending."""
        ...

    @abstractmethod
    async def log_event(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class BillingStore(ABC):
    @abstractmethod
    async def get_printer(self, printer_id: UUID) -> Printer | None: ...

    @abstractmethod
    async def get_student_document(self, student_id: str, document_id: UUID) -> UploadedDocument | None:
        """Document only if owned by `student_id`."""
        ...

    @abstractmethod
    async def get_balance(self, student_id: str) -> PageBalance | None: ...

    @abstractmethod
    async def get_topup(self, transaction_id: UUID) -> TopUpTransaction | None: ...

    @abstractmethod
    async def insert_topup(self, topup: TopUpTransaction) -> None: ...

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[UnitOfWork]: ...


@asynccontextmanager
async def translate_errors() -> AsyncIterator[None]:
    try:
        yield
    except PyMongoError as e:
        log.warning("storage_error", error_type=type(e).__name__, error=str(e))
        if e.has_error_label(UNKNOWN_COMMIT_RESULT):
            raise StorageUnavailableError(
                "Transaction outcome unknown; check state before retrying", retryable=False
            ) from e
        raise StorageUnavailableError() from e


def _from_raw(model: type, raw: dict[str, Any] | None):
    if raw is None:
        return None
    data = dict(raw)
    data["id"] = data.pop("_id")
    return model.model_validate(data)


class MongoUnitOfWork(UnitOfWork):
    def __init__(self, session: AsyncIOMotorClientSession) -> None:
        self.session = session

    async def get_balance(self, student_id: str) -> PageBalance | None:
        return await PageBalanceRecord.find_one(
            PageBalanceRecord.student_id == student_id, session=self.session
        )

    async def debit_balance(self, student_id: str, pages: int) -> PageBalance | None:
        raw = await PageBalanceRecord.get_motor_collection().find_one_and_update(
            {"student_id": student_id, "current_balance": {"$gte": pages}},
            {
                "$inc": {"current_balance": -pages, "used_pages": pages},
                "$set": {"last_updated": datetime.utcnow()},
            },
            return_document=ReturnDocument.AFTER,
            session=self.session,
        )
        return _from_raw(PageBalance, raw)

    async def credit_balance(self, student_id: str, pages: int) -> PageBalance:
        raw = await PageBalanceRecord.get_motor_collection().find_one_and_update(
            {"student_id": student_id},
            {
                "$inc": {"current_balance": pages, "purchased_pages": pages},
                "$set": {"last_updated": datetime.utcnow()},
                "$setOnInsert": {
                    "_id": uuid4(),
                    "default_pages": 0,
                    "used_pages": 0,
                    "semester": None,
                    "allocated_semesters": [],
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=self.session,
        )
        return _from_raw(PageBalance, raw)

    async def allocate_semester(self, student_id: str, pages: int, semester: str) -> bool:
        collection = PageBalanceRecord.get_motor_collection()
        result = await collection.update_one(
            {"student_id": student_id, "allocated_semesters": {"$ne": semester}},
            {
                "$inc": {"current_balance": pages, "default_pages": pages},
                "$set": {"semester": semester, "last_updated": datetime.utcnow()},
                "$addToSet": {"allocated_semesters": semester},
            },
            session=self.session,
        )
        if result.matched_count:
            return True
        if await collection.count_documents({"student_id": student_id}, session=self.session):
            return False
        # no upsert: the $ne filter would collide with the unique student_id index
        await PageBalanceRecord(
            student_id=student_id,
            current_balance=pages,
            default_pages=pages,
            semester=semester,
            allocated_semesters=[semester],
        ).insert(session=self.session)
        return True

    async def list_balance_student_ids(self) -> list[str]:
        return await PageBalanceRecord.get_motor_collection().distinct("student_id", session=self.session)

    async def insert_print_job(self, config: PrintConfig, job: PrintJob) -> None:
        await PrintConfigRecord(**config.model_dump()).insert(session=self.session)
        await PrintJobRecord(**job.model_dump()).insert(session=self.session)

    async def complete_topup(
        self, transaction_id: UUID, payment_method: str, payment_ref: str | None
    ) -> TopUpTransaction | None:
        raw = await TopUpRecord.get_motor_collection().find_one_and_update(
            {"_id": transaction_id, "status": TopUpStatus.PENDING.value},
            {
                "$set": {
                    "status": TopUpStatus.COMPLETED.value,
                    "payment_method": payment_method,
                    "payment_ref": payment_ref,
                    "completed_at": datetime.utcnow(),
                }
            },
            return_document=ReturnDocument.AFTER,
            session=self.session,
        )
        return _from_raw(TopUpTransaction, raw)

    async def log_event(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await audit.log_event(user_id, event_type, entity_type, entity_id, metadata, session=self.session)


class MongoBillingStore(BillingStore):
    """Requires a replica set: every unit of work is a multi-document transaction."""

    def __init__(self, client: AsyncIOMotorClient, commit_attempts: int = 3) -> None:
        self.client = client
        self.commit_attempts = commit_attempts

    async def get_printer(self, printer_id: UUID) -> Printer | None:
        async with translate_errors():
            return await PrinterRecord.get(printer_id)

    async def get_student_document(self, student_id: str, document_id: UUID) -> UploadedDocument | None:
        async with translate_errors():
            return await UploadedDocumentRecord.find_one(
                UploadedDocumentRecord.id == document_id,
                UploadedDocumentRecord.student_id == student_id,
            )

    async def get_balance(self, student_id: str) -> PageBalance | None:
        async with translate_errors():
            return await PageBalanceRecord.find_one(PageBalanceRecord.student_id == student_id)

    async def get_topup(self, transaction_id: UUID) -> TopUpTransaction | None:
        async with translate_errors():
            return await TopUpRecord.get(transaction_id)

    async def insert_topup(self, topup: TopUpTransaction) -> None:
        async with translate_errors():
            await TopUpRecord(**topup.model_dump()).insert()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[UnitOfWork]:
        async with translate_errors():
            async with await self.client.start_session() as session:
                session.start_transaction()
                try:
                    yield MongoUnitOfWork(session)
                except BaseException:
                    if session.in_transaction:
                        await session.abort_transaction()
                    raise
                await self._commit(session)

    async def _commit(self, session: AsyncIOMotorClientSession) -> None:
        # re-sending commitTransaction is safe; the server applies a transaction once
        for attempt in range(1, self.commit_attempts + 1):
            try:
                await session.commit_transaction()
                return
            except PyMongoError as e:
                if not e.has_error_label(UNKNOWN_COMMIT_RESULT) or attempt == self.commit_attempts:
                    raise
                log.warning("transaction_commit_retry", attempt=attempt, error=str(e))
