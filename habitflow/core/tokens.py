"""Signed action tokens for notification buttons.

A token embeds ``{itemId, action}`` and a unique id (``jti``), is signed with
the shared JWT secret and expires after a fixed TTL. The snooze endpoint (or
the Telegram callback) verifies it before acting on the item.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt

from habitflow.data.models import ActionToken

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"

SNOOZE_ACTION = "snooze"


class TokenError(Exception):
    """Raised when an action token is invalid, expired, reused or mismatched."""


class ActionTokenIssuer:
    """Issues and verifies HS256 action tokens."""

    def __init__(self, secret: str, ttl: timedelta = timedelta(hours=1)) -> None:
        self._secret = secret
        self._ttl = ttl

    def issue(
        self, item_id: str, action: str, now: datetime | None = None,
    ) -> ActionToken:
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + self._ttl
        token_id = uuid.uuid4().hex
        claims = {
            "itemId": item_id,
            "action": action,
            "jti": token_id,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self._secret, algorithm=_ALGORITHM)
        return ActionToken(
            token=token,
            token_id=token_id,
            item_id=item_id,
            action=action,
            expires_at=expires_at,
        )

    def verify(
        self, token: str, action: str, item_id: str | None = None,
    ) -> dict:
        """Return the token's claims, or raise TokenError.

        Args:
            token: The encoded token.
            action: The action the caller is about to perform.
            item_id: If given, the token must be bound to this item.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["exp", "jti"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError(f"Invalid token: {exc}") from exc

        if claims.get("action") != action:
            raise TokenError(f"Token is not valid for action {action!r}")
        if item_id is not None and claims.get("itemId") != item_id:
            raise TokenError("Token is bound to a different item")
        return claims
