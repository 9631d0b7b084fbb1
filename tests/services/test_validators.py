from __future__ import annotations

from datetime import date, datetime
from typing import Any

import pytest

from heyso.services.validators import (
    normalize_tags,
    parse_iso_date,
    parse_month_key,
    split_tags,
)
from heyso.util import coerce_int, str_to_bool


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2025-06-01", "2025-06-01"),
        (" 2025-06-01 ", "2025-06-01"),
        ("2025-06-01T23:30:00Z", "2025-06-01"),
        (date(2025, 6, 1), "2025-06-01"),
        (datetime(2025, 6, 1, 12, 0), "2025-06-01"),
    ],
)
def test_parse_iso_date(raw: Any, expected: str) -> None:
    assert parse_iso_date(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "06/01/2025", None, 20250601])
def test_parse_iso_date_rejects_bad_input(raw: Any) -> None:
    with pytest.raises(ValueError):
        parse_iso_date(raw)


def test_parse_month_key() -> None:
    assert parse_month_key("2025-06") == "2025-06"
    assert parse_month_key("2025-06-30") == "2025-06"
    assert parse_month_key(date(2025, 1, 9)) == "2025-01"
    with pytest.raises(ValueError):
        parse_month_key("2025-13")


def test_tags_accept_lists_and_comma_strings() -> None:
    assert split_tags("a, b,,c ") == ["a", "b", "c"]
    assert split_tags(["a", " ", None, "b"]) == ["a", "b"]
    assert split_tags(None) == []
    assert normalize_tags(["Life", "life", "work", "LIFE"]) == ["Life", "work"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [(7, 7), ("12", 12), (" -3 ", -3), ("local-01HZ", None), (True, None), (1.5, None)],
)
def test_coerce_int(value: Any, expected: int | None) -> None:
    assert coerce_int(value) == expected


def test_str_to_bool() -> None:
    assert str_to_bool("yes") is True
    assert str_to_bool("off") is False
    assert str_to_bool(0) is False
    with pytest.raises(ValueError):
        str_to_bool("maybe")
