"""Deterministic print cost in page credits. Pure: every input is passed in."""

import math
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from printquota.core.exceptions import BillingError
from printquota.models.print_job import PaperSize, PrintSide
from printquota.services.page_range import is_whole_document, parse_page_range

DEFAULT_A3_TO_A4_RATIO = 2.0


class BillingQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    effective_pages: int  # pages selected for printing
    sheets: int  # physical sheets per copy
    cost: int


def quote(
    page_count: int,
    copies: int = 1,
    paper_size: PaperSize = PaperSize.A4,
    side: PrintSide = PrintSide.ONE_SIDED,
    page_range: str | None = None,
    a3_to_a4_ratio: float = DEFAULT_A3_TO_A4_RATIO,
) -> BillingQuote:
    if page_count <= 0 or copies <= 0 or a3_to_a4_ratio <= 0:
        raise BillingError(
            "Invalid billing parameters",
            details={"page_count": page_count, "copies": copies, "a3_to_a4_ratio": a3_to_a4_ratio},
        )

    effective = page_count
    if not is_whole_document(page_range):
        selected = parse_page_range(page_range, page_count)
        if not selected:
            raise BillingError(
                "Page range selects no pages of the document",
                details={"page_range": page_range, "page_count": page_count},
            )
        effective = len(selected)

    sheets = math.ceil(effective / 2) if side == PrintSide.DOUBLE_SIDED else effective
    units = sheets * copies
    if paper_size == PaperSize.A3:
        # decimal ratio: 1.1 x 10 bills 11, not 12
        cost = math.ceil(Decimal(str(a3_to_a4_ratio)) * units)
    else:
        cost = units

    if cost <= 0:
        raise BillingError("Computed cost must be positive", details={"cost": cost})
    return BillingQuote(effective_pages=effective, sheets=sheets, cost=int(cost))


def calculate_cost(
    page_count: int,
    copies: int = 1,
    paper_size: PaperSize = PaperSize.A4,
    side: PrintSide = PrintSide.ONE_SIDED,
    page_range: str | None = None,
    a3_to_a4_ratio: float = DEFAULT_A3_TO_A4_RATIO,
) -> int:
    return quote(page_count, copies, paper_size, side, page_range, a3_to_a4_ratio).cost
