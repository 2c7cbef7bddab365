"""
HabitFlow Reminders — SQLite storage.

ItemDB holds tasks and habits (one table, ``kind`` column) plus the ledger of
issued action tokens. SubscriptionDB holds each user's notification targets.

The async methods implement the ItemStore / SubscriptionDirectory ports used
by the scheduler. The sync helpers (add_item, record_completion, ...) stand in
for the CRUD layer when seeding data and in tests.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import closing, contextmanager
from dataclasses import fields
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator
from zoneinfo import ZoneInfo

from habitflow.data.models import (
    ITEM_KINDS,
    RECURRING,
    ActionToken,
    ItemStatus,
    Recurrence,
    Schedulable,
    Subscription,
    TimeWindow,
)
from habitflow.ports.item_store import StoreError

logger = logging.getLogger(__name__)


def _wall_clock(value: datetime) -> datetime:
    """Offset-aware values are converted to naive wall-clock time in TIMEZONE."""
    if value.tzinfo is None:
        return value
    from habitflow.config import settings
    return value.astimezone(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


def _iso(value: datetime | date | None) -> str | None:
    if isinstance(value, datetime):
        value = _wall_clock(value)
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return _wall_clock(datetime.fromisoformat(value)) if value else None


def _utc_iso(value: datetime | None) -> str | None:
    """Token expiry is kept in UTC, independent of the wall clock."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class _SQLiteDB:
    """Shared connection handling for the SQLite stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from habitflow.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def _init_db(self) -> None:
        raise NotImplementedError


class ItemDB(_SQLiteDB):
    """SQLite-backed storage for tasks and habits."""

    def _init_db(self) -> None:
        """Create the items and action_tokens tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    id                  TEXT    PRIMARY KEY,
                    kind                TEXT    NOT NULL DEFAULT 'habit',
                    owner_id            TEXT    NOT NULL,
                    title               TEXT    NOT NULL,
                    status              TEXT    NOT NULL DEFAULT 'PENDING',
                    notify              INTEGER,
                    recurrence          TEXT    NOT NULL DEFAULT 'ONCE',
                    scheduled_date      TEXT,
                    week_days           TEXT    NOT NULL DEFAULT '[]',
                    month_day           INTEGER,
                    window_start        TEXT,
                    window_end          TEXT,
                    reminder_expression TEXT,
                    snooze_until        TEXT,
                    last_completed_at   TEXT,
                    completion_history  TEXT    NOT NULL DEFAULT '[]',
                    streak              INTEGER NOT NULL DEFAULT 0,
                    duration            TEXT,
                    intention           TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_tokens (
                    token_id   TEXT PRIMARY KEY,
                    item_id    TEXT,
                    action     TEXT,
                    token      TEXT,
                    expires_at TEXT,
                    used_at    TEXT
                )
            """)
        logger.debug("Items table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Schedulable:
        cls = ITEM_KINDS.get(row["kind"], Schedulable)
        window = None
        if row["window_start"] and row["window_end"]:
            window = TimeWindow(start=row["window_start"], end=row["window_end"])

        own_fields = {f.name for f in fields(cls)}
        extra = {name: row[name] for name in ("duration", "intention") if name in own_fields}

        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            status=ItemStatus(row["status"]),
            # Legacy rows have no notify value; they count as enabled.
            notify_enabled=row["notify"] is None or bool(row["notify"]),
            recurrence=Recurrence(row["recurrence"]),
            scheduled_date=date.fromisoformat(row["scheduled_date"]) if row["scheduled_date"] else None,
            week_days=json.loads(row["week_days"] or "[]"),
            month_day=row["month_day"],
            time_window=window,
            reminder_expression=row["reminder_expression"],
            snooze_until=_parse_dt(row["snooze_until"]),
            last_completed_at=_parse_dt(row["last_completed_at"]),
            completion_history=[
                _parse_dt(v) for v in json.loads(row["completion_history"] or "[]")
            ],
            streak=row["streak"],
            **extra,
        )

    # -- CRUD helpers -------------------------------------------------------

    def add_item(self, item: Schedulable) -> Schedulable:
        """Insert an item. Assigns an id if it has none."""
        if not item.id:
            item.id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO items
                    (id, kind, owner_id, title, status, notify, recurrence,
                     scheduled_date, week_days, month_day, window_start, window_end,
                     reminder_expression, snooze_until, last_completed_at,
                     completion_history, streak, duration, intention)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id, item.kind, item.owner_id, item.title,
                    item.status.value, int(item.notify_enabled), item.recurrence.value,
                    _iso(item.scheduled_date), json.dumps(list(item.week_days)),
                    item.month_day,
                    item.time_window.start if item.time_window else None,
                    item.time_window.end if item.time_window else None,
                    item.reminder_expression, _iso(item.snooze_until),
                    _iso(item.last_completed_at),
                    json.dumps([_iso(d) for d in item.completion_history]),
                    item.streak,
                    getattr(item, "duration", None),
                    getattr(item, "intention", None),
                ),
            )
        logger.info("%s added: %s '%s' (%s)", item.kind.capitalize(), item.id, item.title, item.recurrence.value)
        return item

    def record_completion(self, item_id: str, completed_at: datetime) -> Schedulable:
        """Mark an item completed: bump streak and append to history."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                raise ValueError(f"Item {item_id} not found")
            item = self._row_to_item(row)
            item.status = ItemStatus.COMPLETED
            item.last_completed_at = completed_at
            item.completion_history.append(completed_at)
            item.streak += 1
            conn.execute(
                """
                UPDATE items
                SET status = ?, last_completed_at = ?, completion_history = ?, streak = ?
                WHERE id = ?
                """,
                (
                    item.status.value, _iso(completed_at),
                    json.dumps([_iso(d) for d in item.completion_history]),
                    item.streak, item_id,
                ),
            )
        logger.info("Item %s completed, streak %d", item_id, item.streak)
        return item

    def list_items(self, owner_id: str | None = None) -> list[Schedulable]:
        query = "SELECT * FROM items"
        params: list = []
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY title"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    # -- ItemStore port ----------------------------------------------------

    async def find_dispatch_candidates(self) -> list[Schedulable]:
        return self._select(
            "SELECT * FROM items WHERE status = ? AND (notify IS NULL OR notify != 0)",
            [ItemStatus.PENDING.value],
        )

    async def find_reset_candidates(
        self, cutoff: datetime, owner_id: str | None = None,
    ) -> list[Schedulable]:
        recurring = sorted(r.value for r in RECURRING)
        query = (
            "SELECT * FROM items WHERE status = ? "
            f"AND recurrence IN ({', '.join('?' for _ in recurring)}) "
            "AND last_completed_at IS NOT NULL AND last_completed_at < ?"
        )
        params: list = [ItemStatus.COMPLETED.value, *recurring, cutoff.isoformat()]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        return self._select(query, params)

    async def get_item(self, item_id: str) -> Schedulable | None:
        items = self._select("SELECT * FROM items WHERE id = ?", [item_id])
        return items[0] if items else None

    async def update_status(self, item_id: str, status: ItemStatus) -> None:
        self._execute("UPDATE items SET status = ? WHERE id = ?", (status.value, item_id))

    async def set_snooze_until(self, item_id: str, until: datetime) -> None:
        self._execute("UPDATE items SET snooze_until = ? WHERE id = ?", (_iso(until), item_id))

    async def record_action_token(self, token: ActionToken) -> None:
        self._execute(
            """
            INSERT OR IGNORE INTO action_tokens (token_id, item_id, action, token, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (token.token_id, token.item_id, token.action, token.token, _utc_iso(token.expires_at)),
        )

    async def purge_expired_action_tokens(self, now: datetime) -> int:
        """Delete ledger rows whose token has expired. Returns rows removed."""
        try:
            with self._connect() as conn:
                removed = conn.execute(
                    """
                    DELETE FROM action_tokens
                    WHERE expires_at IS NOT NULL AND julianday(expires_at) < julianday(?)
                    """,
                    (_utc_iso(now),),
                ).rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        if removed:
            logger.debug("Purged %d expired action tokens", removed)
        return removed

    async def get_action_token(self, token_id: str) -> str | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT token FROM action_tokens WHERE token_id = ?", (token_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return row["token"] if row else None

    async def consume_action_token(
        self, token_id: str, now: datetime, expires_at: datetime | None = None,
    ) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE action_tokens SET used_at = ? WHERE token_id = ? AND used_at IS NULL",
                    (now.isoformat(), token_id),
                )
                if cursor.rowcount > 0:
                    return True
                # Never recorded (e.g. ledger write failed at dispatch): record it as used now.
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO action_tokens (token_id, expires_at, used_at) VALUES (?, ?, ?)",
                    (token_id, _utc_iso(expires_at), now.isoformat()),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _select(self, query: str, params: list) -> list[Schedulable]:
        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        items: list[Schedulable] = []
        for row in rows:
            try:
                items.append(self._row_to_item(row))
            except (ValueError, TypeError, KeyError):
                logger.exception("Skipping unreadable item row %s", row["id"])
        return items

    def _execute(self, query: str, params: tuple) -> None:
        try:
            with self._connect() as conn:
                conn.execute(query, params)
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc


class SubscriptionDB(_SQLiteDB):
    """SQLite-backed storage for Web Push and Telegram subscriptions."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id   TEXT NOT NULL,
                    kind       TEXT NOT NULL,
                    endpoint   TEXT,
                    p256dh     TEXT,
                    auth       TEXT,
                    chat_id    INTEGER,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
        logger.debug("Subscriptions table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            endpoint=row["endpoint"],
            p256dh=row["p256dh"],
            auth=row["auth"],
            chat_id=row["chat_id"],
        )

    def add_webpush(self, owner_id: str, endpoint: str, p256dh: str, auth: str) -> Subscription:
        """Register a browser push subscription. Re-subscribing an endpoint moves it."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM subscriptions WHERE kind = 'webpush' AND endpoint = ?",
                (endpoint,),
            )
            cursor = conn.execute(
                """
                INSERT INTO subscriptions (owner_id, kind, endpoint, p256dh, auth)
                VALUES (?, 'webpush', ?, ?, ?)
                """,
                (owner_id, endpoint, p256dh, auth),
            )
            sub_id = cursor.lastrowid
        logger.info("Push subscription #%d added for owner %s", sub_id, owner_id)
        return Subscription(
            id=sub_id, owner_id=owner_id, kind="webpush",
            endpoint=endpoint, p256dh=p256dh, auth=auth,
        )

    def add_telegram(self, owner_id: str, chat_id: int) -> Subscription:
        """Link a Telegram chat to an owner. Idempotent per (owner, chat)."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE kind = 'telegram' AND owner_id = ? AND chat_id = ?",
                (owner_id, chat_id),
            ).fetchone()
            if row is not None:
                return self._row_to_subscription(row)
            cursor = conn.execute(
                "INSERT INTO subscriptions (owner_id, kind, chat_id) VALUES (?, 'telegram', ?)",
                (owner_id, chat_id),
            )
            sub_id = cursor.lastrowid
        logger.info("Telegram chat %d linked to owner %s", chat_id, owner_id)
        return Subscription(id=sub_id, owner_id=owner_id, kind="telegram", chat_id=chat_id)

    def remove_for_chat(self, chat_id: int) -> int:
        """Unlink a Telegram chat from every owner. Returns rows removed."""
        with self._connect() as conn:
            removed = conn.execute(
                "DELETE FROM subscriptions WHERE kind = 'telegram' AND chat_id = ?",
                (chat_id,),
            ).rowcount
        return removed

    # -- SubscriptionDirectory port ----------------------------------------

    async def find_subscriptions_for(self, owner_id: str) -> list[Subscription]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM subscriptions WHERE owner_id = ? ORDER BY id",
                    (owner_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return [self._row_to_subscription(r) for r in rows]

    async def remove_subscription(self, subscription_id: int) -> bool:
        try:
            with self._connect() as conn:
                removed = conn.execute(
                    "DELETE FROM subscriptions WHERE id = ?", (subscription_id,)
                ).rowcount > 0
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        if removed:
            logger.info("Subscription #%d removed", subscription_id)
        return removed
