from __future__ import annotations

from datetime import date

import pytest

from app.subscriptions.errors import ValidationError
from app.subscriptions.periods import (
    OPEN_END,
    coalesce_end,
    format_month_year,
    intervals_overlap,
    months_inclusive,
    parse_month_year,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("07-2025", date(2025, 7, 1)),
        ("2025-07", date(2025, 7, 1)),
        ("12-1999", date(1999, 12, 1)),
        ("0001-01", date(1, 1, 1)),
    ],
)
def test_parse_month_year_accepts_both_layouts(raw: str, expected: date) -> None:
    assert parse_month_year(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "7-2025",
        "2025/07",
        "13-2025",
        "00-2025",
        "2025-13",
        "0000-05",
        "07-2025 ",
        "July 2025",
        "07-2025\n",
        "2025-07\n",
        "\u0660\u0667-\u0662\u0660\u0662\u0665",
    ],
)
def test_parse_month_year_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(ValidationError):
        parse_month_year(raw)


def test_format_month_year_renders_month_first() -> None:
    assert format_month_year(date(2025, 7, 1)) == "07-2025"
    assert format_month_year(date(1, 1, 1)) == "01-0001"


def test_coalesce_end_uses_far_future_for_open_periods() -> None:
    assert coalesce_end(None) == OPEN_END == date(9999, 12, 1)
    assert coalesce_end(date(2025, 3, 1)) == date(2025, 3, 1)


def test_intervals_overlap_is_inclusive_on_both_ends() -> None:
    jan, mar, apr, jun = date(2025, 1, 1), date(2025, 3, 1), date(2025, 4, 1), date(2025, 6, 1)

    assert intervals_overlap(jan, mar, mar, jun)
    assert not intervals_overlap(jan, mar, apr, jun)
    assert intervals_overlap(jan, None, date(2040, 1, 1), None)
    assert intervals_overlap(apr, jun, jan, None)
    assert not intervals_overlap(apr, None, jan, mar)


def test_months_inclusive_counts_both_boundary_months() -> None:
    assert months_inclusive(date(2025, 1, 1), date(2025, 1, 1)) == 1
    assert months_inclusive(date(2025, 1, 1), date(2025, 12, 1)) == 12
    assert months_inclusive(date(2024, 11, 1), date(2025, 2, 1)) == 4
