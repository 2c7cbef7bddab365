"""Notification port — abstract interface for delivering reminders.

Core modules depend on this protocol, never on a specific push provider.
"""

from __future__ import annotations

from typing import Protocol

from habitflow.data.models import DeliveryResult, ReminderPayload, Subscription


class DeliveryTransport(Protocol):
    """Abstract delivery interface used by the dispatch loop."""

    async def deliver(
        self, subscription: Subscription, payload: ReminderPayload,
    ) -> DeliveryResult: ...
