"""Telegram delivery adapter — implements DeliveryTransport.

Wraps a telegram.Bot instance. Reminders carry a "Snooze" button whose
callback data refers to the snooze token by id (the full token does not fit
Telegram's 64-byte callback limit); the bot resolves it from the token ledger.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import Forbidden, TelegramError

from habitflow.data.models import DeliveryResult, ReminderPayload, Subscription

logger = logging.getLogger(__name__)

SNOOZE_CALLBACK_PREFIX = "snooze:"


def build_keyboard(payload: ReminderPayload, base_url: str = "") -> InlineKeyboardMarkup | None:
    """Inline buttons for a reminder: snooze (if tokened) and open link."""
    row: list[InlineKeyboardButton] = []
    for action in payload.actions:
        if action.get("action") == "snooze" and payload.snooze_token is not None:
            row.append(InlineKeyboardButton(
                action.get("title", "Snooze"),
                callback_data=f"{SNOOZE_CALLBACK_PREFIX}{payload.snooze_token.token_id}",
            ))
    if base_url:
        row.append(InlineKeyboardButton("Open", url=f"{base_url.rstrip('/')}{payload.url}"))
    if not row:
        return None
    return InlineKeyboardMarkup([row])


class TelegramTransport:
    """Telegram implementation of DeliveryTransport."""

    def __init__(self, bot: Bot, base_url: str = "") -> None:
        self._bot = bot
        self._base_url = base_url

    async def deliver(
        self, subscription: Subscription, payload: ReminderPayload,
    ) -> DeliveryResult:
        if subscription.chat_id is None:
            logger.warning("Telegram subscription %d has no chat id", subscription.id)
            return DeliveryResult.FAILED

        text = f"{payload.title}\n{payload.body}"
        try:
            await self._bot.send_message(
                chat_id=subscription.chat_id,
                text=text,
                reply_markup=build_keyboard(payload, self._base_url),
            )
        except Forbidden as exc:
            # The user blocked the bot or left the chat.
            logger.warning("Telegram chat %d unreachable: %s", subscription.chat_id, exc)
            return DeliveryResult.GONE
        except TelegramError as exc:
            logger.warning("Telegram send to %d failed: %s", subscription.chat_id, exc)
            return DeliveryResult.FAILED
        return DeliveryResult.DELIVERED
