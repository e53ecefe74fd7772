"""
period_sort.py — Chronological Ordering of Period Labels

Purpose:
- Parse the period labels used across financial rows and story notes
  ("Q1 2022", "FY 2023") into sortable (year, quarter) keys.
- Sort any list of records carrying such a label, oldest first.

Rules:
- "Qn YYYY" → (YYYY, n)
- "FY YYYY" → (YYYY, 0), so a fiscal year sorts before its own quarters
- anything else → (0, 0), sorting before every recognised label

Usage:
    from stockdesk.utils.period_sort import sort_periods

    rows = sort_periods(rows, key=lambda r: r["period"])
"""

import re
from typing import Callable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

_QUARTER_PATTERN = re.compile(r"^Q([1-4])\s+(\d{4})$")
_FISCAL_YEAR_PATTERN = re.compile(r"^FY\s+(\d{4})$")


def parse_period(label: Optional[str]) -> Tuple[int, int]:
    """
    Return (year, quarter) for a period label; quarter is 0 for fiscal years.

    Unrecognised or empty labels map to (0, 0).
    """
    if not label:
        return (0, 0)
    text = label.strip()

    match = _QUARTER_PATTERN.match(text)
    if match:
        return (int(match.group(2)), int(match.group(1)))

    match = _FISCAL_YEAR_PATTERN.match(text)
    if match:
        return (int(match.group(1)), 0)

    return (0, 0)


def is_quarter(label: Optional[str]) -> bool:
    return bool(label) and _QUARTER_PATTERN.match(label.strip()) is not None


def sort_periods(items: List[T], key: Callable[[T], Optional[str]]) -> List[T]:
    """Stable chronological sort; returns a new list."""
    return sorted(items, key=lambda item: parse_period(key(item)))
