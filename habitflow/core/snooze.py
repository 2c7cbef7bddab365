"""Snooze gate and snooze-token redemption.

The gate is a pure predicate used by the dispatch loop. Redemption is the
write side, triggered by a notification's "Snooze" action: it verifies the
single-use token and pushes the item's snooze deadline forward.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from habitflow.core.tokens import SNOOZE_ACTION, TokenError

if TYPE_CHECKING:
    from habitflow.core.tokens import ActionTokenIssuer
    from habitflow.data.models import Schedulable
    from habitflow.ports.item_store import ItemStore

logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_MINUTES = 30


def is_snoozed(item: Schedulable, now: datetime) -> bool:
    return item.snooze_until is not None and item.snooze_until > now


async def redeem_snooze(
    token: str,
    store: ItemStore,
    issuer: ActionTokenIssuer,
    now: datetime,
    minutes: int = DEFAULT_SNOOZE_MINUTES,
    item_id: str | None = None,
) -> datetime:
    """Snooze the item a token was issued for. Returns the new deadline.

    Raises:
        TokenError: bad signature, expired, wrong action/item, or already used.
        LookupError: the item no longer exists.
    """
    claims = issuer.verify(token, SNOOZE_ACTION, item_id=item_id)
    target_id = claims["itemId"]

    item = await store.get_item(target_id)
    if item is None:
        raise LookupError(f"Item {target_id} not found")

    expires_at = datetime.fromtimestamp(claims["exp"], timezone.utc)
    if not await store.consume_action_token(claims["jti"], now, expires_at=expires_at):
        raise TokenError("Token already used")

    until = now + timedelta(minutes=minutes)
    await store.set_snooze_until(target_id, until)
    logger.info("Item %s snoozed until %s", target_id, until.isoformat())
    return until
