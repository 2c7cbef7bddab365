"""Tests for habitflow.core.snooze — snooze gate and token redemption."""

from datetime import datetime, timedelta

import pytest

from habitflow.core.snooze import is_snoozed, redeem_snooze
from habitflow.core.tokens import SNOOZE_ACTION, TokenError
from habitflow.data.models import Habit, Recurrence

NOW = datetime(2024, 3, 15, 9, 0)


def _habit(**kwargs) -> Habit:
    kwargs.setdefault("id", "h1")
    kwargs.setdefault("owner_id", "u1")
    kwargs.setdefault("title", "Stretch")
    kwargs.setdefault("recurrence", Recurrence.DAILY)
    return Habit(**kwargs)


# ---------------------------------------------------------------------------
# is_snoozed
# ---------------------------------------------------------------------------


class TestIsSnoozed:
    def test_not_snoozed_without_deadline(self):
        assert is_snoozed(_habit(), NOW) is False

    def test_snoozed_before_deadline(self):
        item = _habit(snooze_until=NOW + timedelta(minutes=10))
        assert is_snoozed(item, NOW) is True

    def test_not_snoozed_after_deadline(self):
        item = _habit(snooze_until=NOW + timedelta(minutes=10))
        assert is_snoozed(item, NOW + timedelta(minutes=11)) is False

    def test_not_snoozed_exactly_at_deadline(self):
        item = _habit(snooze_until=NOW)
        assert is_snoozed(item, NOW) is False

    def test_expired_deadline_has_no_effect(self):
        item = _habit(snooze_until=NOW - timedelta(days=3))
        assert is_snoozed(item, NOW) is False


# ---------------------------------------------------------------------------
# redeem_snooze
# ---------------------------------------------------------------------------


class TestRedeemSnooze:
    @pytest.mark.asyncio
    async def test_sets_snooze_deadline(self, item_db, issuer):
        item_db.add_item(_habit())
        token = issuer.issue("h1", SNOOZE_ACTION)
        await item_db.record_action_token(token)

        until = await redeem_snooze(token.token, item_db, issuer, now=NOW, minutes=30)

        assert until == NOW + timedelta(minutes=30)
        stored = await item_db.get_item("h1")
        assert stored.snooze_until == until

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, item_db, issuer):
        item_db.add_item(_habit())
        token = issuer.issue("h1", SNOOZE_ACTION)
        await item_db.record_action_token(token)

        await redeem_snooze(token.token, item_db, issuer, now=NOW)
        with pytest.raises(TokenError, match="already used"):
            await redeem_snooze(token.token, item_db, issuer, now=NOW)

    @pytest.mark.asyncio
    async def test_unrecorded_token_still_single_use(self, item_db, issuer):
        item_db.add_item(_habit())
        token = issuer.issue("h1", SNOOZE_ACTION)

        await redeem_snooze(token.token, item_db, issuer, now=NOW)
        with pytest.raises(TokenError):
            await redeem_snooze(token.token, item_db, issuer, now=NOW)

    @pytest.mark.asyncio
    async def test_mismatched_item_rejected(self, item_db, issuer):
        item_db.add_item(_habit())
        token = issuer.issue("h1", SNOOZE_ACTION)
        with pytest.raises(TokenError):
            await redeem_snooze(token.token, item_db, issuer, now=NOW, item_id="other")

    @pytest.mark.asyncio
    async def test_missing_item_raises_lookup_error(self, item_db, issuer):
        token = issuer.issue("ghost", SNOOZE_ACTION)
        with pytest.raises(LookupError):
            await redeem_snooze(token.token, item_db, issuer, now=NOW)

    @pytest.mark.asyncio
    async def test_wrong_action_rejected(self, item_db, issuer):
        item_db.add_item(_habit())
        token = issuer.issue("h1", "complete")
        with pytest.raises(TokenError):
            await redeem_snooze(token.token, item_db, issuer, now=NOW)
        stored = await item_db.get_item("h1")
        assert stored.snooze_until is None
