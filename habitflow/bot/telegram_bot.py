"""
HabitFlow Reminders — Telegram Bot.

Hosts the reminder scheduler: the scheduler starts with the bot application
and stops with it. Telegram is also a delivery channel: a chat linked to an
owner receives that owner's reminders, with a "Snooze" button.

Security-first: commands from unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from habitflow.adapters.telegram_transport import SNOOZE_CALLBACK_PREFIX
from habitflow.config import settings
from habitflow.core.snooze import redeem_snooze
from habitflow.core.tokens import TokenError
from habitflow.ports.item_store import StoreError

if TYPE_CHECKING:
    from habitflow.core.scheduler import Scheduler, TickResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to HabitFlow Reminders!\n\n"
        "Link this chat to a user with /link <user id> and their task and "
        "habit reminders will arrive here.\n\n"
        "Type /help for the full command list."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Available commands:\n"
        "/link <user id> — Send this user's reminders to this chat\n"
        "/unlink — Stop sending reminders to this chat\n"
        "/tick — Run the reminder check now\n"
        "/help — Show this message"
    )


@authorized_only
async def cmd_link(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /link <owner_id> — register this chat as a delivery target."""
    from habitflow.data.db import SubscriptionDB

    if not context.args:
        await update.message.reply_text("Usage: /link <user id>")
        return

    owner_id = context.args[0].strip()
    chat_id = update.effective_chat.id
    db = SubscriptionDB()
    sub = db.add_telegram(owner_id, chat_id)
    await update.message.reply_text(
        f"Linked. Reminders for {owner_id} will be sent here (subscription #{sub.id})."
    )


@authorized_only
async def cmd_unlink(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /unlink — remove every Telegram subscription for this chat."""
    from habitflow.data.db import SubscriptionDB

    removed = SubscriptionDB().remove_for_chat(update.effective_chat.id)
    if removed:
        await update.message.reply_text(f"Unlinked ({removed} subscription(s) removed).")
    else:
        await update.message.reply_text("This chat was not linked.")


@authorized_only
async def cmd_tick(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tick — run one scheduler tick now and report what it did."""
    scheduler: Scheduler = context.bot_data["scheduler"]
    result = await scheduler.run_tick()
    await update.message.reply_text(format_tick_summary(result))


def format_tick_summary(result: TickResult) -> str:
    """Human-readable summary of a tick for /tick and the CLI."""
    if result.skipped_overlap:
        return "A reminder check is already running. Try again in a moment."

    lines = [f"Reminder check at {result.started_at:%H:%M}"]
    if result.reset_failed:
        lines.append("Reset sweep: failed (see logs)")
    else:
        lines.append(f"Reset to pending: {len(result.reset_ids)}")

    report = result.dispatch
    if report is None or report.load_failed:
        lines.append("Dispatch: could not load items (see logs)")
        return "\n".join(lines)

    lines.append(f"Items checked: {report.evaluated}")
    lines.append(f"Reminders sent: {len(report.dispatched)}")
    if report.rescue_alerts:
        lines.append(f"Streak alerts sent: {len(report.rescue_alerts)}")
    if report.failed_deliveries:
        lines.append(f"Failed deliveries: {report.failed_deliveries}")
    if report.errors:
        lines.append(f"Items with errors: {len(report.errors)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Snooze button
# ---------------------------------------------------------------------------


async def _handle_snooze_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the inline "Snooze" tap on a reminder.

    The signed token is the authorization here: only the chat that received
    the reminder holds its id, and the token is single-use.
    """
    scheduler: Scheduler = context.bot_data["scheduler"]

    query = update.callback_query
    await query.answer()

    token_id = query.data[len(SNOOZE_CALLBACK_PREFIX):]

    try:
        token = await scheduler.store.get_action_token(token_id)
        if token is None:
            await query.edit_message_text("This snooze button has expired.")
            return
        until = await redeem_snooze(
            token,
            scheduler.store,
            scheduler.issuer,
            now=scheduler.now(),
            minutes=settings.SNOOZE_MINUTES,
        )
    except TokenError as exc:
        logger.info("Snooze rejected for token %s: %s", token_id, exc)
        await query.edit_message_text("This snooze button has expired or was already used.")
        return
    except LookupError:
        await query.edit_message_text("This item no longer exists.")
        return
    except StoreError as exc:
        logger.error("Snooze failed for token %s: %s", token_id, exc)
        await query.edit_message_text("Couldn't snooze right now. Please try again later.")
        return

    await query.edit_message_text(f"{query.message.text}\n\n😴 Snoozed until {until:%H:%M}")


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------


def build_app(scheduler: Scheduler | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        scheduler: Reminder scheduler. Defaults to one built from settings,
                   delivering through this bot.
    """
    async def _post_init(application: Application) -> None:
        application.bot_data["scheduler"].start()

    async def _post_shutdown(application: Application) -> None:
        await application.bot_data["scheduler"].stop()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if scheduler is None:
        from habitflow.adapters.factory import create_scheduler
        scheduler = create_scheduler(bot=app.bot)

    app.bot_data["scheduler"] = scheduler

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("link", cmd_link))
    app.add_handler(CommandHandler("unlink", cmd_unlink))
    app.add_handler(CommandHandler("tick", cmd_tick))
    app.add_handler(CallbackQueryHandler(
        _handle_snooze_callback, pattern=rf"^{SNOOZE_CALLBACK_PREFIX}[0-9a-f]+$",
    ))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN is not set; use `python main.py --once` for a single check")
        raise SystemExit(1)

    logger.info("Starting HabitFlow Reminders bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
