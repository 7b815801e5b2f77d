import asyncio
from uuid import uuid4

import pytest

from printquota.core.config import BillingConfig
from printquota.core.exceptions import (
    BillingError,
    ConflictError,
    ConversionUnavailableError,
    InsufficientBalanceError,
    NotFoundError,
)
from printquota.models.print_job import PaperSize, PrintJobStatus, PrintSide
from printquota.models.printer import PrinterStatus
from printquota.services.print_jobs import PrintJobRequest, create_print_job

STUDENT = "2110001"


class FaultBetweenInsertAndDebit(Exception):
    pass


async def test_debit_conserves_balance(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 100, purchased_pages=20, used_pages=20)
    before = store.balances[STUDENT]

    receipt = await create_print_job(
        store, page_counter, billing_config, STUDENT,
        PrintJobRequest(printer_id=printer.id, document_id=doc.id, copies=2),
    )

    after = store.balances[STUDENT]
    assert receipt.status == PrintJobStatus.PENDING
    assert receipt.total_cost == 20
    assert receipt.total_pages == 10
    assert after.current_balance == before.current_balance - 20
    assert after.used_pages == before.used_pages + 20
    assert after.default_pages == before.default_pages
    assert after.purchased_pages == before.purchased_pages

    job = store.jobs[receipt.job_id]
    assert job.cost == 20
    assert job.document_pages == 10
    assert store.configs[job.config_id].copies == 2
    assert [e["event_type"] for e in store.audit] == ["print_job_created"]
    assert store.audit[0]["metadata"]["balance_after"] == after.current_balance


async def test_insufficient_balance_leaves_state_unchanged(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 15)

    with pytest.raises(InsufficientBalanceError) as exc:
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id, copies=2),
        )

    assert exc.value.required_pages == 20
    assert exc.value.available_pages == 15
    assert exc.value.details == {"required_pages": 20, "available_pages": 15}
    assert store.balances[STUDENT].current_balance == 15
    assert store.balances[STUDENT].used_pages == 0
    assert store.jobs == {}
    assert store.configs == {}
    assert store.audit == []


async def test_exact_balance_can_be_spent(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 5)

    receipt = await create_print_job(
        store, page_counter, billing_config, STUDENT,
        PrintJobRequest(printer_id=printer.id, document_id=doc.id, side=PrintSide.DOUBLE_SIDED),
    )

    assert receipt.total_cost == 5
    assert store.balances[STUDENT].current_balance == 0


async def test_page_range_and_a3_ratio(store, page_counter, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 100)

    receipt = await create_print_job(
        store, page_counter, BillingConfig(a3_to_a4_ratio=1.5), STUDENT,
        PrintJobRequest(printer_id=printer.id, document_id=doc.id, paper_size=PaperSize.A3, page_range="1-5, 8"),
    )

    assert receipt.total_pages == 6
    assert receipt.total_cost == 9
    assert store.configs[store.jobs[receipt.job_id].config_id].page_range == "1-5, 8"


async def test_fault_after_job_insert_rolls_back_everything(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 4)
    store.add_balance(STUDENT, 50)

    async def explode(*_):
        raise FaultBetweenInsertAndDebit()

    store.on_debit = explode
    with pytest.raises(FaultBetweenInsertAndDebit):
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )

    assert store.jobs == {}
    assert store.configs == {}
    assert store.audit == []
    assert store.balances[STUDENT].current_balance == 50


async def test_lost_race_reports_fresh_balance(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 12)

    async def concurrent_spend(s, student_id, pages):
        # another job committed between our balance read and the conditional debit
        s.balances[student_id] = s.balances[student_id].model_copy(update={"current_balance": 3})

    store.on_debit = concurrent_spend
    with pytest.raises(InsufficientBalanceError) as exc:
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )

    assert exc.value.available_pages == 3
    assert store.jobs == {}
    # rollback restores the snapshot taken when the unit of work opened
    assert store.balances[STUDENT].current_balance == 12


async def test_concurrent_jobs_never_overdraw(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 10)
    store.add_balance(STUDENT, 35)
    request = PrintJobRequest(printer_id=printer.id, document_id=doc.id)

    results = await asyncio.gather(
        *(create_print_job(store, page_counter, billing_config, STUDENT, request) for _ in range(5)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, InsufficientBalanceError)]
    assert len(succeeded) == 3
    assert len(rejected) == 2
    assert store.balances[STUDENT].current_balance == 5
    assert store.balances[STUDENT].used_pages == 30
    assert len(store.jobs) == 3


async def test_unknown_printer(store, page_counter, billing_config, seed_pdf):
    doc = await seed_pdf(STUDENT, 1)
    with pytest.raises(NotFoundError):
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=uuid4(), document_id=doc.id),
        )


@pytest.mark.parametrize(
    "status,is_active",
    [(PrinterStatus.OFFLINE, True), (PrinterStatus.MAINTENANCE, True), (PrinterStatus.AVAILABLE, False)],
)
async def test_printer_not_accepting_jobs(store, page_counter, billing_config, seed_pdf, status, is_active):
    printer = store.add_printer(status=status, is_active=is_active)
    doc = await seed_pdf(STUDENT, 1)
    store.add_balance(STUDENT, 10)
    with pytest.raises(ConflictError) as exc:
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )
    assert exc.value.details["status"] == status.value
    assert store.balances[STUDENT].current_balance == 10


async def test_document_of_another_student_not_found(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf("someone-else", 1)
    store.add_balance(STUDENT, 10)
    with pytest.raises(NotFoundError):
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )


async def test_missing_balance(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 1)
    with pytest.raises(NotFoundError):
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )


async def test_empty_page_range_rejected_before_debit(store, page_counter, billing_config, seed_pdf):
    printer = store.add_printer()
    doc = await seed_pdf(STUDENT, 3)
    store.add_balance(STUDENT, 10)
    with pytest.raises(BillingError):
        await create_print_job(
            store, page_counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id, page_range="7-9"),
        )
    assert store.units_committed == 0


async def test_missing_file_billed_by_estimate(store, page_counter, billing_config):
    printer = store.add_printer()
    doc = store.add_document(STUDENT, file_type="txt", file_name="notes.txt", file_size=5 * 1024)
    store.add_balance(STUDENT, 10)

    receipt = await create_print_job(
        store, page_counter, billing_config, STUDENT,
        PrintJobRequest(printer_id=printer.id, document_id=doc.id),
    )
    assert receipt.total_cost == 3


async def test_conversion_failure_blocks_job(store, storage, billing_config, tmp_path):
    from conftest import FakeConverter, store_file
    from printquota.services.page_counter import PageCounter

    counter = PageCounter(storage, FakeConverter(tmp_path / "convert", fail=True))
    printer = store.add_printer()
    store_file(storage, "s/essay.docx", b"x" * 64 * 1024)
    doc = store.add_document(STUDENT, file_type="docx", file_name="essay.docx", file_size=64 * 1024, storage_path="s/essay.docx")
    store.add_balance(STUDENT, 10)

    with pytest.raises(ConversionUnavailableError):
        await create_print_job(
            store, counter, billing_config, STUDENT,
            PrintJobRequest(printer_id=printer.id, document_id=doc.id),
        )
    assert store.balances[STUDENT].current_balance == 10

    receipt = await create_print_job(
        store, counter, BillingConfig(estimate_on_conversion_failure=True), STUDENT,
        PrintJobRequest(printer_id=printer.id, document_id=doc.id),
    )
    assert receipt.total_cost == 3


def test_request_accepts_camel_case_and_blank_range():
    request = PrintJobRequest.model_validate(
        {
            "printerId": str(uuid4()),
            "documentId": str(uuid4()),
            "paperSize": "A3",
            "side": "DOUBLE_SIDED",
            "pageRange": "   ",
        }
    )
    assert request.paper_size == PaperSize.A3
    assert request.side == PrintSide.DOUBLE_SIDED
    assert request.page_range is None
