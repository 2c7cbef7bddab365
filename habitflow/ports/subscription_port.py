"""Subscription directory port — where a user's notification targets live."""

from __future__ import annotations

from typing import Protocol

from habitflow.data.models import Subscription


class SubscriptionDirectory(Protocol):
    """Abstract subscription lookup used by the dispatch loop."""

    async def find_subscriptions_for(self, owner_id: str) -> list[Subscription]: ...

    async def remove_subscription(self, subscription_id: int) -> bool: ...
