import pytest

from printquota.services.page_range import is_whole_document, parse_page_range


@pytest.mark.parametrize("expr", [None, "", "   ", "all", "ALL", " All "])
def test_whole_document_expressions(expr):
    assert is_whole_document(expr)


def test_ranges_and_singles():
    assert parse_page_range("1-5, 8", 10) == [1, 2, 3, 4, 5, 8]


def test_duplicates_and_overlaps_counted_once():
    assert parse_page_range("1-3,2-4,4", 10) == [1, 2, 3, 4]


def test_clipped_to_document():
    assert parse_page_range("8-15", 10) == [8, 9, 10]
    assert parse_page_range("0, 11", 10) == []


def test_malformed_and_reversed_tokens_ignored():
    assert parse_page_range("abc, 5-3, 2, 1-, -4, 7 - 9", 10) == [2, 7, 8, 9]


def test_no_valid_tokens():
    assert parse_page_range("x,y", 5) == []
