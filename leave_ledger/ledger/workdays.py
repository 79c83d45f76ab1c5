"""Working-day arithmetic over calendar dates (Saturday and Sunday are off)."""

from __future__ import annotations

from datetime import date, timedelta

WEEKEND_DAYS = frozenset({5, 6})  # Sat, Sun


def is_workday(d: date) -> bool:
    return d.weekday() not in WEEKEND_DAYS


def normalize_to_workday(d: date) -> date:
    """Move a weekend date forward to the following Monday; weekdays unchanged."""
    while not is_workday(d):
        d += timedelta(days=1)
    return d


def count_workdays(start: date, end: date) -> int:
    """Inclusive number of weekdays in ``[start, end]``; 0 when ``end < start``."""
    if end < start:
        return 0

    span = (end - start).days + 1
    full_weeks, remainder = divmod(span, 7)
    count = full_weeks * 5
    first = start.weekday()
    for offset in range(remainder):
        if (first + offset) % 7 not in WEEKEND_DAYS:
            count += 1
    return count


def transaction_days(start: date, end: date) -> tuple[date, date, int]:
    """Normalize a leave range and size the transaction.

    The start moves forward to a workday; if that passes *end* (a range made
    only of weekend days) the range collapses onto the normalized start.
    A transaction always consumes at least one day.

    Returns:
        (normalized_start, normalized_end, days)
    """
    start = normalize_to_workday(start)
    if end < start:
        end = start
    return start, end, max(1, count_workdays(start, end))
