"""Supabase implementation of the backend ports.

Single point of connection to the hosted BaaS: tables via PostgREST,
change feeds and broadcast via Realtime, files via Storage.
"""

import inspect
from typing import Any

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from ..errors import BackendError
from ..logging_config import get_logger
from ..models import ConversationScope
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

TOGGLE_REACTION_RPC = "toggle_message_reaction"


def _server_filter(filters: dict[str, str | None]) -> str | None:
    """Realtime accepts a single `column=eq.value` filter; use the most specific one."""
    selective = [(column, value) for column, value in filters.items() if value is not None]
    if not selective:
        return None
    column, value = selective[-1]
    return f"{column}=eq.{value}"


def _row_matches(filters: dict[str, str | None], row: dict[str, Any]) -> bool:
    return all((row.get(column) or None) == value for column, value in filters.items())


def _first_row(data: Any) -> dict[str, Any]:
    if isinstance(data, list):
        if not data:
            raise BackendError("No row returned (missing or not permitted)")
        return data[0]
    if not data:
        raise BackendError("No row returned (missing or not permitted)")
    return data


class SupabaseBackend:
    """Backend ports over the async Supabase client."""

    def __init__(
        self,
        url: str,
        key: str,
        schema: str = "public",
        client: AsyncClient | None = None,
    ):
        self._url = url
        self._key = key
        self._schema = schema
        self._client = client
        self._channels: dict[str, Any] = {}  # handle id -> realtime channel
        self._broadcast_channels: dict[str, Any] = {}  # channel key -> joined channel

    async def init(self) -> None:
        """Create the async client."""
        if self._client is not None:
            return
        if not self._url or not self._key:
            raise ValueError(
                "Supabase credentials not configured "
                "(SUPABASE_URL, SUPABASE_SERVICE_KEY or SUPABASE_KEY)"
            )
        if self._schema != "public":
            self._client = await acreate_client(
                self._url, self._key, options=AsyncClientOptions(schema=self._schema)
            )
        else:
            self._client = await acreate_client(self._url, self._key)
        logger.info("Supabase client initialized (schema=%s)", self._schema)

    async def close(self) -> None:
        """Remove every open realtime channel."""
        if self._client is None:
            return
        try:
            await self._client.remove_all_channels()
        except Exception as e:
            logger.warning("Failed to remove realtime channels: %s", e)
        self._channels.clear()
        self._broadcast_channels.clear()

    async def clear(self) -> None:
        raise RuntimeError("clear() is not supported against a hosted Supabase project")

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("Backend not initialized")
        return self._client

    def _messages(self):
        return self.client.table(CHAT_MESSAGES_TABLE)

    # IChatTable
    async def select_messages(
        self, scope: ConversationScope, limit: int
    ) -> list[dict[str, Any]]:
        try:
            query = self._messages().select("*").eq("tournament_id", scope.tournament_id)
            if scope.team_id is None:
                query = query.is_("team_id", "null")
            else:
                query = query.eq("team_id", scope.team_id)
            resp = await query.order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            raise BackendError(f"Failed to select chat messages: {e}") from e
        return resp.data or []

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._messages().insert(row).execute()
        except Exception as e:
            raise BackendError(f"Failed to insert chat message: {e}") from e
        return _first_row(resp.data)

    async def update_message(
        self, message_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            resp = await self._messages().update(changes).eq("id", message_id).execute()
        except Exception as e:
            raise BackendError(f"Failed to update chat message: {e}") from e
        return _first_row(resp.data)

    async def delete_message(self, message_id: str) -> None:
        try:
            await self._messages().delete().eq("id", message_id).execute()
        except Exception as e:
            raise BackendError(f"Failed to delete chat message: {e}") from e

    async def toggle_reaction(
        self, message_id: str, emoji: str, user_id: str
    ) -> dict[str, Any]:
        try:
            resp = await self.client.rpc(
                TOGGLE_REACTION_RPC,
                {"p_message_id": message_id, "p_emoji": emoji, "p_user_id": user_id},
            ).execute()
        except Exception as e:
            raise BackendError(f"Failed to toggle reaction: {e}") from e
        return _first_row(resp.data)

    async def can_access_chat(self, user_id: str, tournament_id: str) -> bool:
        try:
            registration = await (
                self.client.table("tournament_registrations")
                .select("id")
                .eq("player_id", user_id)
                .eq("tournament_id", tournament_id)
                .limit(1)
                .execute()
            )
            if registration.data:
                return True

            tournament = await (
                self.client.table("tournaments")
                .select("organizer_id")
                .eq("id", tournament_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise BackendError(f"Failed to check chat access: {e}") from e

        if not tournament.data:
            raise BackendError(f"Tournament not found: {tournament_id}")
        return tournament.data[0].get("organizer_id") == user_id

    async def ping(self) -> None:
        try:
            await self._messages().select("id").limit(1).execute()
        except Exception as e:
            raise BackendError(f"Table API unreachable: {e}") from e

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
        channel = self.client.channel(channel_key)
        server_filter = _server_filter(filters)

        for change_type in ChangeType:
            channel.on_postgres_changes(
                change_type.value,
                callback=lambda payload, t=change_type: self._dispatch_change(
                    t, payload, filters, on_change
                ),
                table=table,
                schema=self._schema,
                filter=server_filter,
            )

        def status_callback(status: Any, error: Exception | None = None) -> None:
            if handle.closed or on_status is None:
                return
            try:
                channel_status = ChannelStatus(getattr(status, "value", status))
            except ValueError:
                logger.debug("Ignoring channel status %s on %s", status, channel_key)
                return
            on_status(channel_status, error)

        try:
            await channel.subscribe(status_callback)
        except Exception as e:
            raise BackendError(f"Failed to subscribe {channel_key}: {e}") from e

        self._channels[handle.id] = channel
        return handle

    @staticmethod
    def _dispatch_change(
        change_type: ChangeType,
        payload: dict[str, Any],
        filters: dict[str, str | None],
        on_change: ChangeHandler,
    ) -> None:
        data = payload.get("data", payload)
        record = data.get("record") or data.get("new") or None
        old_record = data.get("old_record") or data.get("old") or None

        # The server filter covers one column only
        if record is not None and not _row_matches(filters, record):
            return
        if change_type == ChangeType.DELETE:
            record = None

        on_change(ChangeEvent(type=change_type, record=record, old_record=old_record))

    async def subscribe_broadcast(
        self, channel_key: str, event: str, on_message: BroadcastHandler
    ) -> ChannelHandle:
        handle = ChannelHandle(channel_key=channel_key)
        channel = self.client.channel(channel_key)
        channel.on_broadcast(
            event, lambda message: on_message(message.get("payload", message))
        )
        try:
            await channel.subscribe()
        except Exception as e:
            raise BackendError(f"Failed to subscribe {channel_key}: {e}") from e

        self._channels[handle.id] = channel
        self._broadcast_channels[channel_key] = channel
        return handle

    async def send_broadcast(
        self, channel_key: str, event: str, payload: dict[str, Any]
    ) -> None:
        channel = self._broadcast_channels.get(channel_key)
        try:
            if channel is None:
                channel = self.client.channel(channel_key)
                await channel.subscribe()
                self._broadcast_channels[channel_key] = channel
            await channel.send_broadcast(event, payload)
        except Exception as e:
            raise BackendError(f"Failed to broadcast on {channel_key}: {e}") from e

    async def unsubscribe(self, handle: ChannelHandle) -> None:
        handle.closed = True
        channel = self._channels.pop(handle.id, None)
        if channel is None:
            return
        if self._broadcast_channels.get(handle.channel_key) is channel:
            del self._broadcast_channels[handle.channel_key]
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            logger.warning("Failed to remove channel %s: %s", handle.channel_key, e)

    # IObjectStorage
    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        try:
            await self.client.storage.from_(bucket).upload(
                path=path, file=data, file_options={"content-type": content_type}
            )
        except Exception as e:
            raise BackendError(f"Failed to upload {bucket}/{path}: {e}") from e
        return path

    async def get_public_url(self, bucket: str, path: str) -> str:
        url = self.client.storage.from_(bucket).get_public_url(path)
        if inspect.isawaitable(url):
            url = await url
        return url

    async def list_buckets(self) -> list[str]:
        try:
            buckets = await self.client.storage.list_buckets()
        except Exception as e:
            raise BackendError(f"Failed to list buckets: {e}") from e
        return [getattr(bucket, "name", None) or getattr(bucket, "id", "") for bucket in buckets]
