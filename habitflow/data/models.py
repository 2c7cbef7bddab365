"""
HabitFlow Reminders — Data Models.

Tasks and habits share one scheduling shape (Schedulable). The scheduler only
reads and writes the shared fields; the product-specific fields on each record
kind belong to the CRUD layer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime


class ItemStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class Recurrence(str, enum.Enum):
    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


RECURRING = frozenset({Recurrence.DAILY, Recurrence.WEEKLY, Recurrence.MONTHLY})


@dataclass(frozen=True)
class TimeWindow:
    """Daily clock range in which reminders may fire. Both ends inclusive."""

    start: str  # "HH:MM"
    end: str    # "HH:MM"


@dataclass
class Schedulable:
    """Scheduling fields shared by tasks and habits."""

    id: str
    owner_id: str
    title: str
    status: ItemStatus = ItemStatus.PENDING
    notify_enabled: bool = True
    recurrence: Recurrence = Recurrence.ONCE
    scheduled_date: date | None = None        # ONCE only
    week_days: list[int] = field(default_factory=list)  # WEEKLY only, 0=Sunday
    month_day: int | None = None              # MONTHLY only, 1-31
    time_window: TimeWindow | None = None
    reminder_expression: str | None = None    # "m h dom mon dow"
    snooze_until: datetime | None = None
    last_completed_at: datetime | None = None
    completion_history: list[datetime] = field(default_factory=list)
    streak: int = 0

    kind = "item"
    link_path = "/"

    @property
    def deep_link(self) -> str:
        return f"{self.link_path}?openTask={self.id}"


@dataclass
class Task(Schedulable):
    """A one-off or recurring to-do shown on the kanban board."""

    duration: str | None = None  # e.g. "25m", "2h"

    kind = "task"
    link_path = "/kanban"


@dataclass
class Habit(Schedulable):
    """A recurring habit with a streak."""

    intention: str | None = None

    kind = "habit"
    link_path = "/habits"


ITEM_KINDS: dict[str, type[Schedulable]] = {"task": Task, "habit": Habit}


@dataclass
class Subscription:
    """A notification target owned by a user.

    kind="webpush" uses endpoint/p256dh/auth; kind="telegram" uses chat_id.
    """

    id: int
    owner_id: str
    kind: str
    endpoint: str | None = None
    p256dh: str | None = None
    auth: str | None = None
    chat_id: int | None = None

    def webpush_info(self) -> dict:
        """Subscription in the shape the Push API (and pywebpush) expects."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class DeliveryResult(str, enum.Enum):
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    GONE = "GONE"        # subscription expired or revoked; should be removed


@dataclass
class ActionToken:
    """A signed, time-limited token authorising one action on one item."""

    token: str
    token_id: str
    item_id: str
    action: str
    expires_at: datetime


@dataclass
class ReminderPayload:
    """Notification content handed to a delivery transport."""

    title: str
    body: str
    item_id: str
    url: str
    snooze_token: ActionToken | None = None
    actions: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Wire format read by the PWA service worker."""
        data: dict = {"taskId": self.item_id, "url": self.url}
        if self.snooze_token is not None:
            data["snoozeToken"] = self.snooze_token.token
            data["snoozeTokenId"] = self.snooze_token.token_id
        payload: dict = {"title": self.title, "body": self.body, "data": data}
        if self.actions:
            payload["actions"] = self.actions
        return payload
