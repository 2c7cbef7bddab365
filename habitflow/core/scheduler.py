"""
HabitFlow Reminders — Scheduler.

Owns the minute timer. Every interval it runs one tick: the habit reset
sweep first, then the reminder dispatch loop. Ticks fire on a fixed
interval from start(), not aligned to :00 seconds.

A tick that is still running when the timer fires again causes that firing
to be skipped, so slow I/O can never produce overlapping dispatches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from habitflow.core.dispatcher import ReminderDispatcher, TickReport
from habitflow.core.reset_sweep import run_reset_sweep

if TYPE_CHECKING:
    from habitflow.core.tokens import ActionTokenIssuer
    from habitflow.ports.item_store import ItemStore
    from habitflow.ports.notification_port import DeliveryTransport
    from habitflow.ports.subscription_port import SubscriptionDirectory

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def wall_clock(timezone: str) -> Clock:
    """Naive wall-clock time in ``timezone`` (the evaluation timezone)."""
    tz = ZoneInfo(timezone)

    def _now() -> datetime:
        return datetime.now(tz).replace(tzinfo=None)

    return _now


@dataclass
class TickResult:
    """Outcome of one scheduler tick."""

    started_at: datetime
    reset_ids: list[str] = field(default_factory=list)
    reset_failed: bool = False
    dispatch: TickReport | None = None
    skipped_overlap: bool = False


class Scheduler:
    """Periodic reminder scheduler with a start()/stop() lifecycle."""

    def __init__(
        self,
        store: ItemStore,
        directory: SubscriptionDirectory,
        transport: DeliveryTransport,
        issuer: ActionTokenIssuer,
        clock: Clock,
        interval_seconds: float = 60,
        streak_rescue_lead: int = 120,
        snooze_minutes: int = 30,
    ) -> None:
        self._store = store
        self._directory = directory
        self._issuer = issuer
        self._clock = clock
        self._interval = interval_seconds
        self._dispatcher = ReminderDispatcher(
            store,
            directory,
            transport,
            issuer,
            streak_rescue_lead=streak_rescue_lead,
            snooze_minutes=snooze_minutes,
        )
        self._timer: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self._tick_in_progress = False

    @property
    def store(self) -> ItemStore:
        return self._store

    @property
    def directory(self) -> SubscriptionDirectory:
        return self._directory

    @property
    def issuer(self) -> ActionTokenIssuer:
        return self._issuer

    def now(self) -> datetime:
        return self._clock()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    def start(self) -> None:
        """Start the timer on the running event loop. No-op if already running."""
        if self.running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())
        logger.info("Reminder scheduler started (every %ss)", self._interval)

    async def stop(self) -> None:
        """Cancel the timer and wait for any tick in flight to finish."""
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
        logger.info("Reminder scheduler stopped")

    async def _run_timer(self) -> None:
        while True:
            task = asyncio.create_task(self.run_tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self._interval)

    async def run_tick(self) -> TickResult:
        """Run the reset sweep and the dispatch loop once. Never raises."""
        now = self._clock()
        result = TickResult(started_at=now)

        if self._tick_in_progress:
            logger.warning("Previous tick still running at %s, skipping this one", now)
            result.skipped_overlap = True
            return result

        self._tick_in_progress = True
        try:
            logger.info("Running tick at %02d:%02d", now.hour, now.minute)
            try:
                result.reset_ids = await run_reset_sweep(self._store, now)
            except Exception as exc:
                logger.error("Reset sweep failed this tick: %s", exc)
                result.reset_failed = True

            result.dispatch = await self._dispatcher.dispatch_tick(now)
        except Exception:
            logger.exception("Unexpected error in scheduler tick")
        finally:
            self._tick_in_progress = False
        return result
