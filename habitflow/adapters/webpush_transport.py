"""Web Push delivery adapter — implements DeliveryTransport.

Sends the reminder payload as JSON to a browser push subscription, signed
with the server's VAPID keys.
"""

from __future__ import annotations

import asyncio
import json
import logging

from pywebpush import WebPushException, webpush

from habitflow.data.models import DeliveryResult, ReminderPayload, Subscription

logger = logging.getLogger(__name__)

# Push services answer 404/410 for subscriptions that expired or were revoked.
_GONE_STATUSES = (404, 410)


class WebPushTransport:
    """pywebpush implementation of DeliveryTransport."""

    def __init__(self, public_key: str, private_key: str, subject: str) -> None:
        self._public_key = public_key
        self._private_key = private_key
        self._subject = subject
        self._warned_unconfigured = False

    @property
    def configured(self) -> bool:
        return bool(self._public_key and self._private_key)

    async def deliver(
        self, subscription: Subscription, payload: ReminderPayload,
    ) -> DeliveryResult:
        if not self.configured:
            if not self._warned_unconfigured:
                logger.warning("VAPID keys not set; web push delivery disabled")
                self._warned_unconfigured = True
            return DeliveryResult.FAILED

        # Use high urgency so reminders arrive while the screen is off.
        headers = {"Urgency": "high", "Topic": "reminder"}
        try:
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription.webpush_info(),
                data=json.dumps(payload.to_dict()),
                vapid_private_key=self._private_key,
                vapid_claims={"sub": self._subject},
                headers=headers,
            )
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in _GONE_STATUSES:
                logger.warning(
                    "Push subscription %d is gone (HTTP %s)", subscription.id, status,
                )
                return DeliveryResult.GONE
            logger.warning("Push to subscription %d failed: %s", subscription.id, exc)
            return DeliveryResult.FAILED

        return DeliveryResult.DELIVERED
