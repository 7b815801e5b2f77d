import asyncio
import copy
import io
import os
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pypdf import PdfWriter

# Never touch a real database or gateway from unit tests
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/?replicaSet=rs0")
os.environ.setdefault("MONGODB_DB_NAME", "printquota_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("SEPAY_API_KEY", "test-sepay-key")
os.environ.setdefault("CONVERTAPI_SECRET", "")

from printquota.core.config import BillingConfig, PaymentConfig  # noqa: E402
from printquota.core.exceptions import ConversionUnavailableError  # noqa: E402
from printquota.core.security import create_access_token  # noqa: E402
from printquota.db.store import BillingStore, UnitOfWork  # noqa: E402
from printquota.models.document import UploadedDocument  # noqa: E402
from printquota.models.page_balance import PageBalance  # noqa: E402
from printquota.models.print_job import PrintConfig, PrintJob  # noqa: E402
from printquota.models.printer import Printer, PrinterStatus  # noqa: E402
from printquota.models.topup_transaction import TopUpStatus, TopUpTransaction  # noqa: E402
from printquota.services.converters import DocumentConverter, make_work_dir  # noqa: E402
from printquota.services.page_counter import PageCounter  # noqa: E402
from printquota.storage.local import LocalStorage  # noqa: E402

DebitHook = Callable[["InMemoryBillingStore", str, int], Awaitable[None]]


def store_file(storage: LocalStorage, key: str, data: bytes) -> None:
    """Place a file under the storage root, as the upload service does."""
    path = storage.root / key
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def make_pdf_bytes(pages: int) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def bearer(student_id: str, role: str = "student") -> dict[str, str]:
    token = create_access_token({"student_id": student_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


class InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "InMemoryBillingStore") -> None:
        self.store = store

    async def get_balance(self, student_id: str) -> PageBalance | None:
        balance = self.store.balances.get(student_id)
        return balance.model_copy() if balance else None

    async def debit_balance(self, student_id: str, pages: int) -> PageBalance | None:
        if self.store.on_debit:
            await self.store.on_debit(self.store, student_id, pages)
        balance = self.store.balances.get(student_id)
        if balance is None or balance.current_balance < pages:
            return None
        updated = balance.model_copy(
            update={
                "current_balance": balance.current_balance - pages,
                "used_pages": balance.used_pages + pages,
                "last_updated": datetime.utcnow(),
            }
        )
        self.store.balances[student_id] = updated
        return updated.model_copy()

    async def credit_balance(self, student_id: str, pages: int) -> PageBalance:
        balance = self.store.balances.get(student_id) or PageBalance(student_id=student_id)
        updated = balance.model_copy(
            update={
                "current_balance": balance.current_balance + pages,
                "purchased_pages": balance.purchased_pages + pages,
                "last_updated": datetime.utcnow(),
            }
        )
        self.store.balances[student_id] = updated
        return updated.model_copy()

    async def allocate_semester(self, student_id: str, pages: int, semester: str) -> bool:
        balance = self.store.balances.get(student_id) or PageBalance(student_id=student_id)
        if semester in balance.allocated_semesters:
            return False
        self.store.balances[student_id] = balance.model_copy(
            update={
                "current_balance": balance.current_balance + pages,
                "default_pages": balance.default_pages + pages,
                "semester": semester,
                "allocated_semesters": [*balance.allocated_semesters, semester],
                "last_updated": datetime.utcnow(),
            }
        )
        return True

    async def list_balance_student_ids(self) -> list[str]:
        return list(self.store.balances)

    async def insert_print_job(self, config: PrintConfig, job: PrintJob) -> None:
        self.store.configs[config.id] = config
        self.store.jobs[job.id] = job

    async def complete_topup(
        self, transaction_id: UUID, payment_method: str, payment_ref: str | None
    ) -> TopUpTransaction | None:
        topup = self.store.topups.get(transaction_id)
        if topup is None or topup.status != TopUpStatus.PENDING:
            return None
        updated = topup.model_copy(
            update={
                "status": TopUpStatus.COMPLETED,
                "payment_method": payment_method,
                "payment_ref": payment_ref,
                "completed_at": datetime.utcnow(),
            }
        )
        self.store.topups[transaction_id] = updated
        return updated.model_copy()

    async def log_event(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.store.audit.append(
            {
                "user_id": user_id,
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
            }
        )


class InMemoryBillingStore(BillingStore):
    """Units of work run one at a time and roll back to a snapshot on any exception."""

    _TABLES = ("printers", "documents", "balances", "configs", "jobs", "topups", "audit")

    def __init__(self) -> None:
        self.printers: dict[UUID, Printer] = {}
        self.documents: dict[UUID, UploadedDocument] = {}
        self.balances: dict[str, PageBalance] = {}
        self.configs: dict[UUID, PrintConfig] = {}
        self.jobs: dict[UUID, PrintJob] = {}
        self.topups: dict[UUID, TopUpTransaction] = {}
        self.audit: list[dict[str, Any]] = []
        self.on_debit: DebitHook | None = None
        self.units_committed = 0
        self._lock = asyncio.Lock()

    def add_printer(self, status: PrinterStatus = PrinterStatus.AVAILABLE, is_active: bool = True) -> Printer:
        printer = Printer(name="Library L1", status=status, is_active=is_active)
        self.printers[printer.id] = printer
        return printer

    def add_document(self, student_id: str, **fields: Any) -> UploadedDocument:
        fields.setdefault("file_name", "notes.pdf")
        fields.setdefault("file_type", "pdf")
        fields.setdefault("file_size", 1024)
        fields.setdefault("storage_path", f"{student_id}/{uuid4()}.pdf")
        document = UploadedDocument(student_id=student_id, **fields)
        self.documents[document.id] = document
        return document

    def add_balance(self, student_id: str, current: int, **fields: Any) -> PageBalance:
        fields.setdefault("default_pages", current)
        balance = PageBalance(student_id=student_id, current_balance=current, **fields)
        self.balances[student_id] = balance
        return balance

    def add_topup(self, student_id: str, amount: int, pages: int, **fields: Any) -> TopUpTransaction:
        topup = TopUpTransaction(student_id=student_id, amount=amount, pages_added=pages, **fields)
        self.topups[topup.id] = topup
        return topup

    async def get_printer(self, printer_id: UUID) -> Printer | None:
        return self.printers.get(printer_id)

    async def get_student_document(self, student_id: str, document_id: UUID) -> UploadedDocument | None:
        document = self.documents.get(document_id)
        if document is None or document.student_id != student_id:
            return None
        return document

    async def get_balance(self, student_id: str) -> PageBalance | None:
        balance = self.balances.get(student_id)
        return balance.model_copy() if balance else None

    async def get_topup(self, transaction_id: UUID) -> TopUpTransaction | None:
        topup = self.topups.get(transaction_id)
        return topup.model_copy() if topup else None

    async def insert_topup(self, topup: TopUpTransaction) -> None:
        self.topups[topup.id] = topup

    @asynccontextmanager
    async def unit_of_work(self):
        async with self._lock:
            snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._TABLES}
            try:
                yield InMemoryUnitOfWork(self)
            except BaseException:
                for name, value in snapshot.items():
                    setattr(self, name, value)
                raise
            self.units_committed += 1


class FakeConverter(DocumentConverter):
    name = "fake"

    def __init__(self, work_root: Path, pages: int = 3, fail: bool = False) -> None:
        self.work_root = work_root
        self.pages = pages
        self.fail = fail
        self.calls: list[Path] = []

    async def convert(self, source: Path) -> Path:
        self.calls.append(source)
        if self.fail:
            raise ConversionUnavailableError("Converter offline", details={"converter": self.name})
        pdf = make_work_dir(self.work_root) / f"{source.stem}.pdf"
        pdf.write_bytes(make_pdf_bytes(self.pages))
        return pdf


@pytest.fixture
def store() -> InMemoryBillingStore:
    return InMemoryBillingStore()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "uploads")


@pytest.fixture
def converter(tmp_path: Path) -> FakeConverter:
    return FakeConverter(tmp_path / "convert")


@pytest.fixture
def page_counter(storage: LocalStorage, converter: FakeConverter) -> PageCounter:
    return PageCounter(storage, converter)


@pytest.fixture
def billing_config() -> BillingConfig:
    return BillingConfig()


@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig()


@pytest.fixture
def seed_pdf(store: InMemoryBillingStore, storage: LocalStorage):
    """Store a real PDF with `pages` pages and register it for `student_id`."""

    async def _seed(student_id: str, pages: int, name: str = "notes.pdf") -> UploadedDocument:
        data = make_pdf_bytes(pages)
        key = f"{student_id}/{uuid4()}.pdf"
        store_file(storage, key, data)
        return store.add_document(student_id, file_name=name, file_type="pdf", file_size=len(data), storage_path=key)

    return _seed


@pytest_asyncio.fixture
async def client(
    store: InMemoryBillingStore,
    page_counter: PageCounter,
) -> AsyncGenerator[AsyncClient, None]:
    from printquota.deps import get_page_counter, get_store
    from printquota.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_page_counter] = lambda: page_counter
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
