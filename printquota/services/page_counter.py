"""Authoritative page counts for stored documents.

PDFs are counted exactly with pypdf. Word-processing and presentation files are
converted to PDF first, because they are billed per true page. Spreadsheets,
text and unknown formats use a byte-size heuristic. The result is always >= 1.
"""

import asyncio
import math
import shutil
from enum import Enum
from pathlib import Path
from typing import NamedTuple

from pypdf import PdfReader

from printquota.core.exceptions import ConversionUnavailableError
from printquota.core.logging import get_logger
from printquota.models.document import UploadedDocument
from printquota.services.converters import DocumentConverter
from printquota.storage.base import StorageBackend

log = get_logger(__name__)

KIB = 1024


class DocumentFormat(str, Enum):
    PDF = "pdf"
    WORD = "word"
    PRESENTATION = "presentation"
    SPREADSHEET = "spreadsheet"
    TEXT = "text"
    UNKNOWN = "unknown"


BYTES_PER_PAGE = {
    DocumentFormat.PDF: 50 * KIB,
    DocumentFormat.WORD: 30 * KIB,
    DocumentFormat.PRESENTATION: 110 * KIB,
    DocumentFormat.SPREADSHEET: 50 * KIB,
    DocumentFormat.TEXT: 2 * KIB,
    DocumentFormat.UNKNOWN: 100 * KIB,
}

_EXTENSIONS = {
    "pdf": DocumentFormat.PDF,
    "doc": DocumentFormat.WORD,
    "docx": DocumentFormat.WORD,
    "odt": DocumentFormat.WORD,
    "rtf": DocumentFormat.WORD,
    "ppt": DocumentFormat.PRESENTATION,
    "pptx": DocumentFormat.PRESENTATION,
    "odp": DocumentFormat.PRESENTATION,
    "xls": DocumentFormat.SPREADSHEET,
    "xlsx": DocumentFormat.SPREADSHEET,
    "ods": DocumentFormat.SPREADSHEET,
    "csv": DocumentFormat.SPREADSHEET,
    "txt": DocumentFormat.TEXT,
}

_MIME_MARKERS = (
    ("application/pdf", DocumentFormat.PDF),
    ("wordprocessingml", DocumentFormat.WORD),
    ("msword", DocumentFormat.WORD),
    ("presentationml", DocumentFormat.PRESENTATION),
    ("powerpoint", DocumentFormat.PRESENTATION),
    ("spreadsheetml", DocumentFormat.SPREADSHEET),
    ("ms-excel", DocumentFormat.SPREADSHEET),
    ("text/plain", DocumentFormat.TEXT),
)

CONVERTED_FORMATS = (DocumentFormat.WORD, DocumentFormat.PRESENTATION)


def classify(file_type: str, file_name: str | None = None) -> DocumentFormat:
    """Format family from an extension tag or MIME type, falling back to the file name."""
    tag = (file_type or "").strip().lower().lstrip(".")
    if tag in _EXTENSIONS:
        return _EXTENSIONS[tag]
    for marker, fmt in _MIME_MARKERS:
        if marker in tag:
            return fmt
    if file_name:
        suffix = Path(file_name).suffix.lower().lstrip(".")
        if suffix in _EXTENSIONS:
            return _EXTENSIONS[suffix]
    return DocumentFormat.UNKNOWN


def estimate_pages(fmt: DocumentFormat, file_size: int) -> int:
    return max(1, math.ceil(max(file_size, 0) / BYTES_PER_PAGE[fmt]))


class PageCount(NamedTuple):
    pages: int
    estimated: bool


def read_pdf_page_count(path: Path) -> int:
    with path.open("rb") as fh:
        return len(PdfReader(fh).pages)


class PageCounter:
    def __init__(self, storage: StorageBackend, converter: DocumentConverter) -> None:
        self.storage = storage
        self.converter = converter

    async def count(self, document: UploadedDocument, allow_estimate: bool = False) -> int:
        return (await self.measure(document, allow_estimate)).pages

    async def measure(self, document: UploadedDocument, allow_estimate: bool = False) -> PageCount:
        """
        Page count of `document`, re-derived from the stored file.

        Missing files and unreadable PDFs degrade to the size heuristic. For formats that
        need conversion, a failed conversion raises ConversionUnavailableError unless
        `allow_estimate` is set.
        """
        fmt = classify(document.file_type, document.file_name)
        try:
            path = await self.storage.local_path(document.storage_path)
        except FileNotFoundError:
            estimated = estimate_pages(fmt, document.file_size)
            log.warning(
                "document_file_missing",
                document_id=str(document.id),
                storage_path=document.storage_path,
                estimated_pages=estimated,
            )
            return PageCount(estimated, True)

        if fmt == DocumentFormat.PDF:
            return await self._count_pdf(path, document)
        if fmt in CONVERTED_FORMATS:
            return await self._count_converted(path, document, fmt, allow_estimate)
        return PageCount(estimate_pages(fmt, document.file_size), True)

    async def _count_pdf(self, path: Path, document: UploadedDocument) -> PageCount:
        try:
            pages = await asyncio.to_thread(read_pdf_page_count, path)
        except Exception as e:  # pypdf raises a wide range of errors on damaged files
            estimated = estimate_pages(DocumentFormat.PDF, document.file_size)
            log.warning("pdf_parse_failed", document_id=str(document.id), error=str(e), estimated_pages=estimated)
            return PageCount(estimated, True)
        return PageCount(max(1, pages), False)

    async def _count_converted(
        self,
        path: Path,
        document: UploadedDocument,
        fmt: DocumentFormat,
        allow_estimate: bool,
    ) -> PageCount:
        try:
            pdf_path = await self.converter.convert(path)
        except ConversionUnavailableError as e:
            if not allow_estimate:
                raise
            estimated = estimate_pages(fmt, document.file_size)
            log.info("conversion_estimate_used", document_id=str(document.id), reason=e.message, estimated_pages=estimated)
            return PageCount(estimated, True)

        try:
            pages = await asyncio.to_thread(read_pdf_page_count, pdf_path)
        except Exception as e:
            if not allow_estimate:
                raise ConversionUnavailableError(
                    "Converted PDF could not be read", details={"document_id": str(document.id)}
                ) from e
            return PageCount(estimate_pages(fmt, document.file_size), True)
        finally:
            shutil.rmtree(pdf_path.parent, ignore_errors=True)
        log.debug("pages_counted", document_id=str(document.id), format=fmt.value, pages=pages)
        return PageCount(max(1, pages), False)
