"""Item store port — abstract interface over persisted tasks and habits.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from habitflow.data.models import ActionToken, ItemStatus, Schedulable


class StoreError(Exception):
    """Raised when any item or subscription store operation fails."""


class ItemStore(Protocol):
    """Abstract item store used by the scheduler."""

    async def find_dispatch_candidates(self) -> list[Schedulable]:
        """PENDING items whose notify flag is not explicitly off."""
        ...

    async def find_reset_candidates(
        self, cutoff: datetime, owner_id: str | None = None,
    ) -> list[Schedulable]:
        """COMPLETED recurring items last completed before ``cutoff``."""
        ...

    async def get_item(self, item_id: str) -> Schedulable | None: ...

    async def update_status(self, item_id: str, status: ItemStatus) -> None: ...

    async def set_snooze_until(self, item_id: str, until: datetime) -> None: ...

    async def record_action_token(self, token: ActionToken) -> None: ...

    async def get_action_token(self, token_id: str) -> str | None: ...

    async def consume_action_token(
        self, token_id: str, now: datetime, expires_at: datetime | None = None,
    ) -> bool:
        """Mark a token used. False if it had already been used."""
        ...

    async def purge_expired_action_tokens(self, now: datetime) -> int:
        """Drop ledger entries for tokens that expired before ``now`` (UTC)."""
        ...
