"""Backend ports: the BaaS surface consumed by the chat core."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from ..models import ConversationScope

CHAT_MESSAGES_TABLE = "chat_messages"


class ChangeType(str, Enum):
    """Row change kinds delivered by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    """Channel lifecycle states (same values as the Supabase SDK)."""

    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


@dataclass
class ChangeEvent:
    """A single row change, carrying full-row payloads where available."""

    type: ChangeType
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None


@dataclass(eq=False)
class ChannelHandle:
    """Disposable reference to one open channel subscription."""

    channel_key: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    closed: bool = False


ChangeHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[ChannelStatus, Exception | None], None]
BroadcastHandler = Callable[[dict[str, Any]], None]


class IChatTable(Protocol):
    """Relational access to chat_messages and chat access rules."""

    async def select_messages(
        self, scope: ConversationScope, limit: int
    ) -> list[dict[str, Any]]:
        """Newest `limit` rows of a room, ordered by created_at descending."""
        ...

    async def insert_message(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row; the backend assigns id and created_at. Returns the stored row."""
        ...

    async def update_message(
        self, message_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update columns of a row. Returns the stored row."""
        ...

    async def delete_message(self, message_id: str) -> None:
        """Delete a row."""
        ...

    async def toggle_reaction(
        self, message_id: str, emoji: str, user_id: str
    ) -> dict[str, Any]:
        """Atomically toggle one user's reaction. Returns the stored row."""
        ...

    async def can_access_chat(self, user_id: str, tournament_id: str) -> bool:
        """True for the tournament organizer or a registered player."""
        ...

    async def ping(self) -> None:
        """Cheap round trip to the table API."""
        ...


class IRealtime(Protocol):
    """Change feeds and broadcast channels."""

    async def subscribe_changes(
        self,
        channel_key: str,
        table: str,
        filters: dict[str, str | None],
        on_change: ChangeHandler,
        on_status: StatusHandler | None = None,
    ) -> ChannelHandle:
        """Open a channel delivering row changes matching `filters`."""
        ...

    async def subscribe_broadcast(
        self, channel_key: str, event: str, on_message: BroadcastHandler
    ) -> ChannelHandle:
        """Open a broadcast channel listening for `event`."""
        ...

    async def send_broadcast(
        self, channel_key: str, event: str, payload: dict[str, Any]
    ) -> None:
        """Fire-and-forget broadcast; no persistence, no delivery guarantee."""
        ...

    async def unsubscribe(self, handle: ChannelHandle) -> None:
        """Close a channel. Idempotent."""
        ...


class IObjectStorage(Protocol):
    """Binary object storage."""

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        """Store an object. Returns the stored path."""
        ...

    async def get_public_url(self, bucket: str, path: str) -> str:
        """Public URL for a stored object."""
        ...

    async def list_buckets(self) -> list[str]:
        """Names of available buckets."""
        ...


class IBackend(IChatTable, IRealtime, IObjectStorage, Protocol):
    """Everything the chat core needs from the BaaS, behind one handle."""

    async def init(self) -> None:
        """Open connections."""
        ...

    async def close(self) -> None:
        """Close connections and channels."""
        ...

    async def clear(self) -> None:
        """Remove all chat data (local development only)."""
        ...
