"""Adapter factory — wires the scheduler and its transports from config."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from habitflow.config import settings
from habitflow.data.models import DeliveryResult, ReminderPayload, Subscription

if TYPE_CHECKING:
    from telegram import Bot

    from habitflow.core.scheduler import Scheduler
    from habitflow.core.tokens import ActionTokenIssuer
    from habitflow.ports.notification_port import DeliveryTransport

logger = logging.getLogger(__name__)


class RoutingTransport:
    """DeliveryTransport that picks a concrete transport by subscription kind."""

    def __init__(self, transports: dict[str, DeliveryTransport]) -> None:
        self._transports = transports

    @property
    def kinds(self) -> list[str]:
        return sorted(self._transports)

    async def deliver(
        self, subscription: Subscription, payload: ReminderPayload,
    ) -> DeliveryResult:
        transport = self._transports.get(subscription.kind)
        if transport is None:
            logger.warning(
                "No transport for %r subscriptions (subscription %d)",
                subscription.kind, subscription.id,
            )
            return DeliveryResult.FAILED
        return await transport.deliver(subscription, payload)


def create_transport(bot: Bot | None = None) -> RoutingTransport:
    """Build the delivery transport from settings.

    Args:
        bot: Telegram bot to deliver through. Without one, telegram
             subscriptions cannot be served.
    """
    from habitflow.adapters.webpush_transport import WebPushTransport

    transports: dict[str, DeliveryTransport] = {
        "webpush": WebPushTransport(
            settings.VAPID_PUBLIC_KEY,
            settings.VAPID_PRIVATE_KEY,
            settings.VAPID_SUBJECT,
        ),
    }

    if bot is not None:
        from habitflow.adapters.telegram_transport import TelegramTransport

        transports["telegram"] = TelegramTransport(bot, base_url=settings.APP_BASE_URL)

    return RoutingTransport(transports)


def create_token_issuer() -> ActionTokenIssuer:
    from habitflow.core.tokens import ActionTokenIssuer

    return ActionTokenIssuer(
        settings.JWT_SECRET,
        ttl=timedelta(minutes=settings.SNOOZE_TOKEN_TTL_MINUTES),
    )


def create_scheduler(
    bot: Bot | None = None,
    db_path: str | None = None,
) -> Scheduler:
    """Build a Scheduler backed by the SQLite stores and configured transports.

    Args:
        bot: Optional Telegram bot for the telegram delivery channel.
        db_path: SQLite path. Defaults to DATABASE_PATH.
    """
    from habitflow.core.scheduler import Scheduler, wall_clock
    from habitflow.data.db import ItemDB, SubscriptionDB

    return Scheduler(
        store=ItemDB(db_path),
        directory=SubscriptionDB(db_path),
        transport=create_transport(bot),
        issuer=create_token_issuer(),
        clock=wall_clock(settings.TIMEZONE),
        interval_seconds=settings.TICK_INTERVAL_SECONDS,
        streak_rescue_lead=settings.STREAK_RESCUE_LEAD_MINUTES,
        snooze_minutes=settings.SNOOZE_MINUTES,
    )
