"""Page-range expressions such as "1-5, 8"."""

import re

_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_SINGLE = re.compile(r"^\d+$")

ALL_PAGES = "all"


def is_whole_document(expr: str | None) -> bool:
    return expr is None or not expr.strip() or expr.strip().lower() == ALL_PAGES


def parse_page_range(expr: str, total_pages: int) -> list[int]:
    """
    Return the sorted, de-duplicated 1-based pages selected by `expr` within [1, total_pages].
    Malformed tokens and reversed ranges select nothing.
    """
    pages: set[int] = set()
    for part in expr.split(","):
        part = part.strip()
        if not part:
            continue
        m = _RANGE.match(part)
        if m:
            start, end = int(m.group(1)), int(m.group(2))
            if start > end:
                continue
            pages.update(range(max(1, start), min(end, total_pages) + 1))
        elif _SINGLE.match(part):
            n = int(part)
            if 1 <= n <= total_pages:
                pages.add(n)
    return sorted(pages)
