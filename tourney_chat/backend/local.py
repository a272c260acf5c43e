"""SQLite-backed stand-in for the BaaS (tables, change feed, broadcast, storage)."""

import asyncio
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from ..config import resolve_db_path
from ..errors import BackendError
from ..logging_config import get_logger
from ..models import (
    ConversationScope,
    reactions_from_row,
    reactions_to_row,
    toggle_reaction,
)
from .ports import (
    CHAT_MESSAGES_TABLE,
    BroadcastHandler,
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    ChannelHandle,
    ChannelStatus,
    StatusHandler,
)

logger = get_logger(__name__)

MESSAGE_COLUMNS = (
    "id",
    "tournament_id",
    "team_id",
    "sender_id",
    "sender_name",
    "message",
    "message_type",
    "file_url",
    "file_name",
    "file_size",
    "file_type",
    "thumbnail_url",
    "duration",
    "reactions",
    "reply_to",
    "is_edited",
    "edited_at",
    "is_pinned",
    "is_announcement",
    "client_ref",
    "created_at",
)
# A row never moves between rooms or changes author
IMMUTABLE_COLUMNS = frozenset({"id", "tournament_id", "team_id", "sender_id", "created_at"})
BOOLEAN_COLUMNS = frozenset({"is_edited", "is_pinned", "is_announcement"})

DEFAULT_BUCKETS = ("chat-files",)


@dataclass
class _ChangeSubscription:
    handle: ChannelHandle
    table: str
    filters: dict[str, str | None]
    on_change: ChangeHandler
    on_status: StatusHandler | None


def _matches(filters: dict[str, str | None], row: dict[str, Any] | None) -> bool:
    if row is None:
        return False
    return all((row.get(column) or None) == value for column, value in filters.items())


def _encode(column: str, value: Any) -> Any:
    if column in BOOLEAN_COLUMNS:
        return int(bool(value))
    if column == "reactions":
        return json.dumps(value or [], ensure_ascii=False)
    return value


def _decode_row(row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    data.pop("seq", None)
    for column in BOOLEAN_COLUMNS:
        data[column] = bool(data.get(column))
    data["reactions"] = json.loads(data.get("reactions") or "[]")
    return data


class LocalBackend:
    """In-process BaaS: SQLite rows and objects, in-memory channels."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        public_url_base: str = "local://storage",
    ):
        self._db_path = resolve_db_path(db_path)
        self._public_url_base = public_url_base.rstrip("/")
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._last_created_at: datetime | None = None

        self._change_subs: list[_ChangeSubscription] = []
        self._broadcast_subs: dict[tuple[str, str], list[tuple[ChannelHandle, BroadcastHandler]]] = {}
        self._buckets: set[str] = set(DEFAULT_BUCKETS)

        self._feed_paused = False
        self._queued: list[tuple[str, ChangeEvent]] = []

    # Lifecycle
    async def init(self) -> None:
        """Open the database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close channels and the database connection."""
        for sub in self._change_subs:
            sub.handle.closed = True
        self._change_subs.clear()
        self._broadcast_subs.clear()
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def clear(self) -> None:
        """Delete all rows and objects."""
        conn = self._require_conn()
        for table in (
            "chat_messages",
            "tournament_registrations",
            "tournaments",
            "storage_objects",
        ):
            await conn.execute(f"DELETE FROM {table}")
        await conn.commit()
        self._queued.clear()

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Backend not initialized")
        return self._conn

    # Seeding (local development and tests)
    async def add_tournament(self, tournament_id: str, organizer_id: str) -> None:
        conn = self._require_conn()
        await conn.execute(
            "INSERT OR REPLACE INTO tournaments (id, organizer_id) VALUES (?, ?)",
            (tournament_id, organizer_id),
        )
        await conn.commit()

    async def register_player(self, tournament_id: str, player_id: str) -> None:
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT OR IGNORE INTO tournament_registrations (tournament_id, player_id)
            VALUES (?, ?)
            """,
            (tournament_id, player_id),
        )
        await conn.commit()

    # IChatTable
    async def select_messages(
        self, scope: ConversationScope, limit: int
    ) -> list[dict[str, Any]]:
        conn = self._require_conn()
        try:
            if scope.team_id is None:
                cursor = await conn.execute(
                    """
                    SELECT * FROM chat_messages
                    WHERE tournament_id = ? AND team_id IS NULL
                    ORDER BY created_at DESC, seq DESC
                    LIMIT ?
                    """,
                    (scope.tournament_id, limit),
                )
            else:
                cursor = await conn.execute(
                    """
                    SELECT * FROM chat_messages
                    WHERE tournament_id = ? AND team_id = ?
                    ORDER BY created_at DESC, seq DESC
                    LIMIT ?
                    """,
                    (scope.tournament_id, scope.team_id, limit),
                )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise BackendError(f"Failed to select chat messages: {e}") from e
        return [_decode_row(row) for row in rows]

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        conn = self._require_conn()
        unknown = set(row) - set(MESSAGE_COLUMNS)
        if unknown:
            raise BackendError(f"Unknown chat_messages columns: {sorted(unknown)}")

        async with self._write_lock:
            values = dict(row)
            values["id"] = values.get("id") or str(uuid.uuid4())
            values["created_at"] = values.get("created_at") or self._next_created_at()
            columns = [c for c in MESSAGE_COLUMNS if c in values]
            try:
                await conn.execute(
                    f"""
                    INSERT INTO chat_messages ({", ".join(columns)})
                    VALUES ({", ".join("?" for _ in columns)})
                    """,
                    tuple(_encode(c, values[c]) for c in columns),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                raise BackendError(f"Failed to insert chat message: {e}") from e
            stored = await self._fetch_message(values["id"])

        self._publish_change(
            CHAT_MESSAGES_TABLE, ChangeEvent(type=ChangeType.INSERT, record=stored)
        )
        return stored

    async def update_message(
        self, message_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        forbidden = set(changes) & IMMUTABLE_COLUMNS
        if forbidden:
            raise BackendError(f"Columns cannot be updated: {sorted(forbidden)}")
        unknown = set(changes) - set(MESSAGE_COLUMNS)
        if unknown:
            raise BackendError(f"Unknown chat_messages columns: {sorted(unknown)}")

        async with self._write_lock:
            old, stored = await self._update_locked(message_id, changes)

        self._publish_change(
            CHAT_MESSAGES_TABLE,
            ChangeEvent(type=ChangeType.UPDATE, record=stored, old_record=old),
        )
        return stored

    async def delete_message(self, message_id: str) -> None:
        conn = self._require_conn()
        async with self._write_lock:
            old = await self._fetch_message(message_id, required=False)
            try:
                await conn.execute("DELETE FROM chat_messages WHERE id = ?", (message_id,))
                await conn.commit()
            except aiosqlite.Error as e:
                raise BackendError(f"Failed to delete chat message: {e}") from e

        if old is not None:
            self._publish_change(
                CHAT_MESSAGES_TABLE, ChangeEvent(type=ChangeType.DELETE, old_record=old)
            )

    async def toggle_reaction(
        self, message_id: str, emoji: str, user_id: str
    ) -> dict[str, Any]:
        # Read-modify-write under the write lock, so concurrent toggles serialize
        async with self._write_lock:
            current = await self._fetch_message(message_id)
            reactions = toggle_reaction(
                reactions_from_row(current["reactions"]), emoji, user_id
            )
            old, stored = await self._update_locked(
                message_id, {"reactions": reactions_to_row(reactions)}
            )

        self._publish_change(
            CHAT_MESSAGES_TABLE,
            ChangeEvent(type=ChangeType.UPDATE, record=stored, old_record=old),
        )
        return stored

    async def can_access_chat(self, user_id: str, tournament_id: str) -> bool:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT organizer_id FROM tournaments WHERE id = ?", (tournament_id,)
        )
        tournament = await cursor.fetchone()
        if tournament is None:
            raise BackendError(f"Tournament not found: {tournament_id}")
        if tournament["organizer_id"] == user_id:
            return True

        cursor = await conn.execute(
            """
            SELECT 1 FROM tournament_registrations
            WHERE tournament_id = ? AND player_id = ?
            """,
            (tournament_id, user_id),
        )
        return await cursor.fetchone() is not None

    async def ping(self) -> None:
        conn = self._require_conn()
        cursor = await conn.execute("SELECT 1")
        await cursor.fetchone()

    async def _fetch_message(
        self, message_id: str, required: bool = True
    ) -> dict[str, Any] | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT * FROM chat_messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            if required:
                raise BackendError(f"Chat message not found: {message_id}")
            return None
        return _decode_row(row)

    async def _update_locked(
        self, message_id: str, changes: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        conn = self._require_conn()
        old = await self._fetch_message(message_id)
        columns = list(changes)
        try:
            await conn.execute(
                f"""
                UPDATE chat_messages
                SET {", ".join(f"{c} = ?" for c in columns)}
                WHERE id = ?
                """,
                (*(_encode(c, changes[c]) for c in columns), message_id),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise BackendError(f"Failed to update chat message: {e}") from e
        return old, await self._fetch_message(message_id)

    def _next_created_at(self) -> str:
        now = datetime.now(timezone.utc)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now.isoformat(timespec="microseconds")

    # IRealtime
    async def subscribe_changes(
        self,
        channel_key: str,
        table: str,
        filters: dict[str, str | None],
        on_change: ChangeHandler,
        on_status: StatusHandler | None = None,
    ) -> ChannelHandle:
        handle = ChannelHandle(channel_key=channel_key)
        self._change_subs.append(
            _ChangeSubscription(handle, table, dict(filters), on_change, on_status)
        )
        logger.debug("Channel %s subscribed to %s", channel_key, table)
        if on_status:
            on_status(ChannelStatus.SUBSCRIBED, None)
        return handle

    async def subscribe_broadcast(
        self, channel_key: str, event: str, on_message: BroadcastHandler
    ) -> ChannelHandle:
        handle = ChannelHandle(channel_key=channel_key)
        self._broadcast_subs.setdefault((channel_key, event), []).append(
            (handle, on_message)
        )
        return handle

    async def send_broadcast(
        self, channel_key: str, event: str, payload: dict[str, Any]
    ) -> None:
        for handle, handler in list(self._broadcast_subs.get((channel_key, event), [])):
            try:
                handler(dict(payload))
            except Exception as e:
                logger.error("Error in broadcast handler on %s: %s", channel_key, e)

    async def unsubscribe(self, handle: ChannelHandle) -> None:
        handle.closed = True
        self._change_subs = [s for s in self._change_subs if s.handle is not handle]
        for key, subs in list(self._broadcast_subs.items()):
            remaining = [(h, fn) for h, fn in subs if h is not handle]
            if remaining:
                self._broadcast_subs[key] = remaining
            else:
                del self._broadcast_subs[key]

    def open_channel_count(self) -> int:
        """Number of live change and broadcast subscriptions."""
        return len(self._change_subs) + sum(len(s) for s in self._broadcast_subs.values())

    def pause_feed(self) -> None:
        """Queue change events instead of delivering them (simulates latency)."""
        self._feed_paused = True

    def resume_feed(self) -> None:
        """Deliver queued change events in commit order and resume live delivery."""
        self._feed_paused = False
        queued, self._queued = self._queued, []
        for table, event in queued:
            self._deliver(table, event)

    def drop_channel(
        self,
        channel_key: str,
        status: ChannelStatus = ChannelStatus.CHANNEL_ERROR,
    ) -> int:
        """Simulate a network drop of every change subscription on `channel_key`."""
        dropped = [s for s in self._change_subs if s.handle.channel_key == channel_key]
        self._change_subs = [s for s in self._change_subs if s not in dropped]
        for sub in dropped:
            sub.handle.closed = True
            if sub.on_status:
                sub.on_status(status, ConnectionError(f"{channel_key} dropped"))
        return len(dropped)

    def _publish_change(self, table: str, event: ChangeEvent) -> None:
        if self._feed_paused:
            self._queued.append((table, event))
            return
        self._deliver(table, event)

    def _deliver(self, table: str, event: ChangeEvent) -> None:
        row = event.record if event.record is not None else event.old_record
        for sub in list(self._change_subs):
            if sub.table != table or not _matches(sub.filters, row):
                continue
            try:
                sub.on_change(event)
            except Exception as e:
                logger.error(
                    "Error in change handler on %s: %s", sub.handle.channel_key, e
                )

    # IObjectStorage
    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        conn = self._require_conn()
        try:
            await conn.execute(
                """
                INSERT INTO storage_objects (bucket, path, content_type, data, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    bucket,
                    path,
                    content_type,
                    data,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            await conn.commit()
        except aiosqlite.IntegrityError as e:
            raise BackendError(f"The resource already exists: {bucket}/{path}") from e
        self._buckets.add(bucket)
        return path

    async def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_url_base}/{bucket}/{path}"

    async def list_buckets(self) -> list[str]:
        return sorted(self._buckets)

    async def download(self, bucket: str, path: str) -> bytes | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            "SELECT data FROM storage_objects WHERE bucket = ? AND path = ?",
            (bucket, path),
        )
        row = await cursor.fetchone()
        return bytes(row["data"]) if row else None
