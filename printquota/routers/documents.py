from uuid import UUID

from fastapi import APIRouter, Depends, Query

from printquota.core.exceptions import NotFoundError
from printquota.db.store import BillingStore
from printquota.deps import Principal, get_current_student, get_page_counter, get_store
from printquota.services.page_counter import PageCounter

router = APIRouter()


@router.get("/{document_id}/page-count")
async def document_page_count(
    document_id: UUID,
    estimate: bool = Query(False, description="Fall back to the size heuristic if conversion fails"),
    student: Principal = Depends(get_current_student),
    store: BillingStore = Depends(get_store),
    page_counter: PageCounter = Depends(get_page_counter),
):
    """Preview the billable page count of one of the caller's documents."""
    document = await store.get_student_document(student.student_id, document_id)
    if not document:
        raise NotFoundError("Document not found")
    measured = await page_counter.measure(document, allow_estimate=estimate)
    return {"document_id": str(document.id), "page_count": measured.pages, "estimated": measured.estimated}
