"""Tests for habitflow.bot.telegram_bot — Telegram bot handlers.

Tests the command handlers, the snooze button flow, and authorization.
The scheduler and subscription storage are mocked.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from habitflow.bot.telegram_bot import (
    _handle_snooze_callback,
    cmd_link,
    cmd_tick,
    cmd_unlink,
    format_tick_summary,
)
from habitflow.core.dispatcher import TickReport
from habitflow.core.scheduler import TickResult
from habitflow.core.tokens import SNOOZE_ACTION
from habitflow.data.models import Habit, Recurrence, Subscription
from habitflow.ports.item_store import StoreError

NOW = datetime(2024, 3, 15, 9, 0)


def _make_update(text="", user_id=12345, chat_id=555):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(scheduler=None, args=None):
    context = MagicMock()
    context.args = args or []
    context.bot_data = {"scheduler": scheduler or MagicMock()}
    return context


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unauthorized_user_is_ignored(self):
        scheduler = MagicMock()
        scheduler.run_tick = AsyncMock()
        update = _make_update(user_id=99999)

        await cmd_tick(update, _make_context(scheduler))

        scheduler.run_tick.assert_not_awaited()
        update.message.reply_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_user_is_ignored(self):
        update = _make_update()
        update.effective_user = None

        await cmd_unlink(update, _make_context())

        update.message.reply_text.assert_not_awaited()


# ---------------------------------------------------------------------------
# /link and /unlink
# ---------------------------------------------------------------------------


class TestLinkCommands:
    @pytest.mark.asyncio
    async def test_link_without_args_shows_usage(self):
        update = _make_update("/link")

        await cmd_link(update, _make_context())

        assert "Usage" in update.message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_link_registers_chat(self):
        update = _make_update("/link u1")
        with patch("habitflow.data.db.SubscriptionDB") as mock_db_cls:
            mock_db_cls.return_value.add_telegram.return_value = Subscription(
                id=7, owner_id="u1", kind="telegram", chat_id=555,
            )
            await cmd_link(update, _make_context(args=["u1"]))

        mock_db_cls.return_value.add_telegram.assert_called_once_with("u1", 555)
        assert "#7" in update.message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_unlink(self):
        update = _make_update("/unlink")
        with patch("habitflow.data.db.SubscriptionDB") as mock_db_cls:
            mock_db_cls.return_value.remove_for_chat.return_value = 2
            await cmd_unlink(update, _make_context())

        mock_db_cls.return_value.remove_for_chat.assert_called_once_with(555)
        assert "2 subscription" in update.message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_unlink_when_not_linked(self):
        update = _make_update("/unlink")
        with patch("habitflow.data.db.SubscriptionDB") as mock_db_cls:
            mock_db_cls.return_value.remove_for_chat.return_value = 0
            await cmd_unlink(update, _make_context())

        assert update.message.reply_text.await_args.args[0] == "This chat was not linked."


# ---------------------------------------------------------------------------
# /tick and its summary
# ---------------------------------------------------------------------------


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_replies_with_summary(self):
        scheduler = MagicMock()
        scheduler.run_tick = AsyncMock(return_value=TickResult(
            started_at=NOW, reset_ids=["a"], dispatch=TickReport(evaluated=3, dispatched=["b"]),
        ))
        update = _make_update("/tick")

        await cmd_tick(update, _make_context(scheduler))

        text = update.message.reply_text.await_args.args[0]
        assert "Reminder check at 09:00" in text
        assert "Reset to pending: 1" in text
        assert "Reminders sent: 1" in text


class TestFormatTickSummary:
    def test_overlap(self):
        result = TickResult(started_at=NOW, skipped_overlap=True)
        assert "already running" in format_tick_summary(result)

    def test_full_report(self):
        report = TickReport(
            evaluated=5, dispatched=["a", "b"], rescue_alerts=["c"],
            failed_deliveries=1, errors=["d"],
        )
        text = format_tick_summary(TickResult(started_at=NOW, dispatch=report))

        assert "Items checked: 5" in text
        assert "Reminders sent: 2" in text
        assert "Streak alerts sent: 1" in text
        assert "Failed deliveries: 1" in text
        assert "Items with errors: 1" in text

    def test_failures(self):
        result = TickResult(
            started_at=NOW, reset_failed=True, dispatch=TickReport(load_failed=True),
        )
        text = format_tick_summary(result)

        assert "Reset sweep: failed" in text
        assert "could not load items" in text


# ---------------------------------------------------------------------------
# Snooze button
# ---------------------------------------------------------------------------


def _snooze_update(token_id):
    update = MagicMock()
    update.callback_query.data = f"snooze:{token_id}"
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    update.callback_query.message.text = "Task Reminder\nMeditate"
    return update


def _scheduler_for(store, issuer):
    scheduler = MagicMock()
    scheduler.store = store
    scheduler.issuer = issuer
    scheduler.now.return_value = NOW
    return scheduler


class TestSnoozeCallback:
    @pytest.mark.asyncio
    async def test_snoozes_item(self, item_db, issuer):
        item_db.add_item(Habit(id="h1", owner_id="u1", title="Meditate",
                               recurrence=Recurrence.DAILY))
        token = issuer.issue("h1", SNOOZE_ACTION)
        await item_db.record_action_token(token)
        update = _snooze_update(token.token_id)

        await _handle_snooze_callback(update, _make_context(_scheduler_for(item_db, issuer)))

        update.callback_query.answer.assert_awaited_once()
        text = update.callback_query.edit_message_text.await_args.args[0]
        assert text.endswith("Snoozed until 09:30")
        assert (await item_db.get_item("h1")).snooze_until == datetime(2024, 3, 15, 9, 30)

    @pytest.mark.asyncio
    async def test_second_tap_is_rejected(self, item_db, issuer):
        item_db.add_item(Habit(id="h1", owner_id="u1", title="Meditate"))
        token = issuer.issue("h1", SNOOZE_ACTION)
        await item_db.record_action_token(token)
        context = _make_context(_scheduler_for(item_db, issuer))

        await _handle_snooze_callback(_snooze_update(token.token_id), context)
        update = _snooze_update(token.token_id)
        await _handle_snooze_callback(update, context)

        text = update.callback_query.edit_message_text.await_args.args[0]
        assert "already used" in text

    @pytest.mark.asyncio
    async def test_unknown_token_id(self, item_db, issuer):
        update = _snooze_update("deadbeef")

        await _handle_snooze_callback(update, _make_context(_scheduler_for(item_db, issuer)))

        text = update.callback_query.edit_message_text.await_args.args[0]
        assert text == "This snooze button has expired."

    @pytest.mark.asyncio
    async def test_deleted_item(self, item_db, issuer):
        token = issuer.issue("gone", SNOOZE_ACTION)
        await item_db.record_action_token(token)
        update = _snooze_update(token.token_id)

        await _handle_snooze_callback(update, _make_context(_scheduler_for(item_db, issuer)))

        text = update.callback_query.edit_message_text.await_args.args[0]
        assert text == "This item no longer exists."

    @pytest.mark.asyncio
    async def test_store_failure(self, issuer):
        store = AsyncMock()
        store.get_action_token.side_effect = StoreError("db locked")
        update = _snooze_update("abc123")

        await _handle_snooze_callback(update, _make_context(_scheduler_for(store, issuer)))

        text = update.callback_query.edit_message_text.await_args.args[0]
        assert "try again later" in text
