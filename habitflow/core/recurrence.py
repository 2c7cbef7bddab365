"""Recurrence evaluator — decides whether an item is due on a calendar day.

No I/O: this module only inspects item fields.
"""

from __future__ import annotations

from datetime import date

from habitflow.data.models import Recurrence, Schedulable


def weekday_index(day: date) -> int:
    """Weekday as stored on items: 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def is_due_today(item: Schedulable, today: date) -> bool:
    """True if the item's recurrence policy selects ``today``.

    MONTHLY items are not clamped: a month_day of 31 never matches in a
    30-day month, and 29-31 never match in a short February.
    """
    if item.recurrence == Recurrence.ONCE:
        scheduled = item.scheduled_date
        if scheduled is None:
            return False
        return (scheduled.year, scheduled.month, scheduled.day) == (
            today.year, today.month, today.day,
        )

    if item.recurrence == Recurrence.DAILY:
        return True

    if item.recurrence == Recurrence.WEEKLY:
        return weekday_index(today) in (item.week_days or [])

    if item.recurrence == Recurrence.MONTHLY:
        return item.month_day == today.day

    return False
