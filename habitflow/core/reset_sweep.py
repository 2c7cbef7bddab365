"""
HabitFlow Reminders — Habit Reset Sweep.

Reopens completed recurring items when a new occurrence period starts.
Only ``status`` changes: completion history and streak stay as they are.

The sweep is idempotent. Once an item is back to PENDING it no longer
matches the candidate query, so a second run in the same minute is a no-op.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from habitflow.core.recurrence import weekday_index
from habitflow.data.models import ItemStatus, Recurrence

if TYPE_CHECKING:
    from habitflow.data.models import Schedulable
    from habitflow.ports.item_store import ItemStore

logger = logging.getLogger(__name__)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def should_reset(item: Schedulable, today: date) -> bool:
    """True if a completed recurring item begins a new cycle ``today``."""
    if item.recurrence == Recurrence.DAILY:
        return True
    if item.recurrence == Recurrence.WEEKLY:
        return weekday_index(today) in (item.week_days or [])
    if item.recurrence == Recurrence.MONTHLY:
        return item.month_day == today.day
    # One-shot items never come back.
    return False


async def run_reset_sweep(
    store: ItemStore,
    now: datetime,
    owner_id: str | None = None,
) -> list[str]:
    """Reset every eligible completed item to PENDING.

    Args:
        store: Item store.
        now: Current wall-clock time.
        owner_id: If provided, only sweep this owner's items.

    Returns:
        IDs of the items that were reset.

    Raises:
        StoreError: if loading candidates fails. Any failure on a single
        item is logged and skipped; that item is retried on the next tick.
    """
    cutoff = start_of_day(now)
    candidates = await store.find_reset_candidates(cutoff, owner_id=owner_id)
    if not candidates:
        return []

    logger.info("Found %d completed items to check for reset", len(candidates))
    today = now.date()
    reset_ids: list[str] = []

    for item in candidates:
        try:
            if not _is_eligible(item, cutoff, today):
                continue
            await store.update_status(item.id, ItemStatus.PENDING)
        except Exception:
            logger.exception("Reset sweep: failed on item %s", item.id)
            continue

        item.status = ItemStatus.PENDING
        reset_ids.append(item.id)
        logger.info(
            "Reset %s %s '%s' to PENDING (new %s cycle)",
            item.kind, item.id, item.title, item.recurrence.value.lower(),
        )

    return reset_ids


def _is_eligible(item: Schedulable, cutoff: datetime, today: date) -> bool:
    # Re-check what the candidate query promises.
    if item.status != ItemStatus.COMPLETED:
        return False
    if item.last_completed_at is None or item.last_completed_at >= cutoff:
        return False
    if not should_reset(item, today):
        logger.debug("Item %s '%s' not due today, staying completed", item.id, item.title)
        return False
    return True
