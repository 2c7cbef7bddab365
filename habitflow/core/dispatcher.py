"""
HabitFlow Reminders — Dispatch Loop.

Once per tick, every PENDING item with notifications enabled goes through
the gates below, in order. The first gate that rejects ends evaluation of
that item for this tick:

    1. time window      (habitflow.core.time_window)
    2. recurrence       (habitflow.core.recurrence)
    3. snooze           (habitflow.core.snooze)
    4. reminder expr.   (habitflow.core.cron_matcher)

Items that pass are pushed to every subscription of their owner. Between
steps 2 and 3 a due habit with a live streak may also get a one-off
"streak emergency" alert when its window is about to close.

Dispatch never changes item state. Failures are contained: one bad
subscription does not stop the others, one bad item does not stop the tick.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from habitflow.core.cron_matcher import is_well_formed, matches
from habitflow.core.recurrence import is_due_today
from habitflow.core.snooze import DEFAULT_SNOOZE_MINUTES, is_snoozed
from habitflow.core.time_window import minutes_until_end, within_window
from habitflow.core.tokens import SNOOZE_ACTION
from habitflow.data.models import DeliveryResult, ItemStatus, ReminderPayload

if TYPE_CHECKING:
    from habitflow.core.tokens import ActionTokenIssuer
    from habitflow.data.models import Schedulable, Subscription
    from habitflow.ports.item_store import ItemStore
    from habitflow.ports.notification_port import DeliveryTransport
    from habitflow.ports.subscription_port import SubscriptionDirectory

logger = logging.getLogger(__name__)

DEFAULT_STREAK_RESCUE_LEAD = 120


class SkipReason(str, enum.Enum):
    INACTIVE = "inactive"
    OUTSIDE_WINDOW = "outside_window"
    NOT_DUE = "not_due"
    SNOOZED = "snoozed"
    NO_EXPRESSION = "no_expression"
    MALFORMED_EXPRESSION = "malformed_expression"
    NOT_THIS_MINUTE = "not_this_minute"
    ALREADY_SENT = "already_sent"
    NO_SUBSCRIPTIONS = "no_subscriptions"


@dataclass
class TickReport:
    """What one dispatch tick did."""

    evaluated: int = 0
    dispatched: list[str] = field(default_factory=list)
    rescue_alerts: list[str] = field(default_factory=list)
    skipped: Counter = field(default_factory=Counter)
    failed_deliveries: int = 0
    removed_subscriptions: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    load_failed: bool = False


def _minute_of(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0)


class ReminderDispatcher:
    """Evaluates items and delivers reminders for one tick at a time."""

    def __init__(
        self,
        store: ItemStore,
        directory: SubscriptionDirectory,
        transport: DeliveryTransport,
        issuer: ActionTokenIssuer,
        streak_rescue_lead: int = DEFAULT_STREAK_RESCUE_LEAD,
        snooze_minutes: int = DEFAULT_SNOOZE_MINUTES,
    ) -> None:
        self._store = store
        self._directory = directory
        self._transport = transport
        self._issuer = issuer
        self._streak_rescue_lead = streak_rescue_lead
        self._snooze_minutes = snooze_minutes
        # (kind of send, item id) -> minute it was last sent in
        self._sent_minutes: dict[tuple[str, str], datetime] = {}

    async def dispatch_tick(self, now: datetime) -> TickReport:
        """Evaluate every candidate item against ``now``. Never raises."""
        report = TickReport()

        try:
            items = await self._store.find_dispatch_candidates()
        except Exception as exc:
            logger.error("Dispatch: failed to load candidate items: %s", exc)
            report.load_failed = True
            return report

        logger.info(
            "Dispatch check at %02d:%02d, %d candidate items",
            now.hour, now.minute, len(items),
        )
        warned_expressions: set[str] = set()

        for item in items:
            report.evaluated += 1
            try:
                reason = await self._process_item(item, now, report, warned_expressions)
            except Exception:
                logger.exception("Dispatch: error while processing item %s", item.id)
                report.errors.append(item.id)
                continue
            if reason is not None:
                report.skipped[reason] += 1

        self._forget_old_minutes(now)
        await self._purge_expired_tokens()
        logger.info(
            "Dispatch done: %d evaluated, %d dispatched, %d failed deliveries, %d errors",
            report.evaluated, len(report.dispatched),
            report.failed_deliveries, len(report.errors),
        )
        return report

    async def _process_item(
        self,
        item: Schedulable,
        now: datetime,
        report: TickReport,
        warned_expressions: set[str],
    ) -> SkipReason | None:
        """Run one item through the gates. Returns why it was skipped, if it was."""
        if item.status != ItemStatus.PENDING or item.notify_enabled is False:
            logger.debug("Item %s: not pending or notifications off", item.id)
            return SkipReason.INACTIVE

        if not within_window(item.time_window, now):
            logger.debug("Item %s: outside time window", item.id)
            return SkipReason.OUTSIDE_WINDOW

        if not is_due_today(item, now.date()):
            logger.debug("Item %s: not due today (%s)", item.id, item.recurrence.value)
            return SkipReason.NOT_DUE

        await self._maybe_send_streak_rescue(item, now, report)

        if is_snoozed(item, now):
            logger.debug("Item %s: snoozed until %s", item.id, item.snooze_until)
            return SkipReason.SNOOZED

        expression = item.reminder_expression
        if not expression:
            logger.debug("Item %s: no reminder expression", item.id)
            return SkipReason.NO_EXPRESSION

        if not is_well_formed(expression):
            if expression not in warned_expressions:
                warned_expressions.add(expression)
                logger.warning(
                    "Malformed reminder expression %r (item %s); it will never fire",
                    expression, item.id,
                )
            return SkipReason.MALFORMED_EXPRESSION

        if not matches(expression, now):
            logger.debug("Item %s: %r does not match this minute", item.id, expression)
            return SkipReason.NOT_THIS_MINUTE

        minute = _minute_of(now)
        if self._sent_minutes.get(("reminder", item.id)) == minute:
            logger.info("Item %s: reminder already sent this minute", item.id)
            return SkipReason.ALREADY_SENT

        logger.info("Item %s '%s': reminder expression matched, sending", item.id, item.title)
        subscriptions = await self._subscriptions_for(item)
        if not subscriptions:
            return SkipReason.NO_SUBSCRIPTIONS

        payload = await self._build_reminder(item)
        await self._deliver_all(item, subscriptions, payload, report)

        self._sent_minutes[("reminder", item.id)] = minute
        report.dispatched.append(item.id)
        return None

    async def _maybe_send_streak_rescue(
        self, item: Schedulable, now: datetime, report: TickReport,
    ) -> None:
        """Warn the owner when a streak is about to be lost."""
        if self._streak_rescue_lead <= 0:
            return
        if item.streak <= 0 or item.time_window is None:
            return
        if minutes_until_end(item.time_window, now) != self._streak_rescue_lead:
            return

        minute = _minute_of(now)
        if self._sent_minutes.get(("rescue", item.id)) == minute:
            return

        subscriptions = await self._subscriptions_for(item)
        if not subscriptions:
            return

        hours = self._streak_rescue_lead / 60
        left = f"{hours:g} hours" if self._streak_rescue_lead >= 60 else f"{self._streak_rescue_lead} minutes"
        logger.info("Item %s: streak of %d expires in %s, sending alert", item.id, item.streak, left)
        payload = ReminderPayload(
            title="🔥 Streak Emergency!",
            body=f"Don't lose your {item.streak} day streak on \"{item.title}\"! {left} left!",
            item_id=item.id,
            url=item.deep_link,
            actions=[{"action": "open", "title": "Complete Now"}],
        )
        await self._deliver_all(item, subscriptions, payload, report)
        self._sent_minutes[("rescue", item.id)] = minute
        report.rescue_alerts.append(item.id)

    async def _build_reminder(self, item: Schedulable) -> ReminderPayload:
        token = self._issuer.issue(item.id, SNOOZE_ACTION)
        try:
            await self._store.record_action_token(token)
        except Exception as exc:
            # The token is still valid on its own; only id-based lookups break.
            logger.warning("Could not record snooze token for item %s: %s", item.id, exc)

        return ReminderPayload(
            title="Task Reminder",
            body=item.title,
            item_id=item.id,
            url=item.deep_link,
            snooze_token=token,
            actions=[{"action": "snooze", "title": f"Snooze {self._snooze_minutes}m"}],
        )

    async def _subscriptions_for(self, item: Schedulable) -> list[Subscription]:
        subscriptions = await self._directory.find_subscriptions_for(item.owner_id)
        if not subscriptions:
            logger.info("Item %s: no subscriptions for owner %s", item.id, item.owner_id)
        return subscriptions

    async def _deliver_all(
        self,
        item: Schedulable,
        subscriptions: list[Subscription],
        payload: ReminderPayload,
        report: TickReport,
    ) -> int:
        """Deliver to each subscription. Returns the number delivered."""
        delivered = 0
        for sub in subscriptions:
            try:
                result = await self._transport.deliver(sub, payload)
            except Exception as exc:
                logger.warning(
                    "Delivery to subscription %d (%s) raised: %s", sub.id, sub.kind, exc,
                )
                result = DeliveryResult.FAILED

            if result == DeliveryResult.DELIVERED:
                delivered += 1
                continue

            report.failed_deliveries += 1
            if result == DeliveryResult.GONE:
                await self._drop_subscription(sub, report)
            else:
                logger.warning("Delivery to subscription %d (%s) failed", sub.id, sub.kind)

        logger.info(
            "Item %s: delivered to %d/%d subscriptions",
            item.id, delivered, len(subscriptions),
        )
        return delivered

    async def _drop_subscription(self, sub: Subscription, report: TickReport) -> None:
        logger.warning("Subscription %d (%s) is gone, removing it", sub.id, sub.kind)
        try:
            removed = await self._directory.remove_subscription(sub.id)
        except Exception as exc:
            logger.error("Failed to remove subscription %d: %s", sub.id, exc)
            return
        if removed:
            report.removed_subscriptions.append(sub.id)

    async def _purge_expired_tokens(self) -> None:
        try:
            await self._store.purge_expired_action_tokens(datetime.now(timezone.utc))
        except Exception as exc:
            logger.warning("Could not purge expired action tokens: %s", exc)

    def _forget_old_minutes(self, now: datetime) -> None:
        horizon = _minute_of(now) - timedelta(minutes=1)
        self._sent_minutes = {
            key: minute for key, minute in self._sent_minutes.items() if minute >= horizon
        }
