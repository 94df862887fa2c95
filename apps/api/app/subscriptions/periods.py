"""Month-granular date helpers shared by the subscription service and stores.

Every date handled here is the first day of a calendar month. Two dates inside
the same month are indistinguishable once parsed.
"""

from __future__ import annotations

import re
from datetime import date

from app.subscriptions.errors import ValidationError


OPEN_END = date(9999, 12, 1)

_MONTH_FIRST_RE = re.compile(r"(?P<month>[0-9]{2})-(?P<year>[0-9]{4})")
_YEAR_FIRST_RE = re.compile(r"(?P<year>[0-9]{4})-(?P<month>[0-9]{2})")


def parse_month_year(value: str) -> date:
    """Parse ``MM-YYYY`` or ``YYYY-MM`` into the first day of that month."""
    if not value:
        raise ValidationError("empty date")

    match = _MONTH_FIRST_RE.fullmatch(value) or _YEAR_FIRST_RE.fullmatch(value)
    if match is None:
        raise ValidationError(f"invalid month date '{value}', expected MM-YYYY or YYYY-MM")

    year = int(match.group("year"))
    month = int(match.group("month"))
    if not 1 <= month <= 12 or year < 1:
        raise ValidationError(f"month date '{value}' is out of range")
    return date(year, month, 1)


def format_month_year(value: date) -> str:
    return f"{value.month:02d}-{value.year:04d}"


def coalesce_end(end: date | None) -> date:
    return OPEN_END if end is None else end


def intervals_overlap(start1: date, end1: date | None, start2: date, end2: date | None) -> bool:
    return start1 <= coalesce_end(end2) and start2 <= coalesce_end(end1)


def months_inclusive(a: date, b: date) -> int:
    return (b.year - a.year) * 12 + (b.month - a.month) + 1


def max_date(a: date, b: date) -> date:
    return a if a > b else b


def min_date(a: date, b: date) -> date:
    return a if a < b else b
