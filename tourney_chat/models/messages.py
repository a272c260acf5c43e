"""Chat message data models and the chat_messages row format."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

GENERAL_ROOM = "general"


@dataclass(frozen=True)
class ConversationScope:
    """One chat room: a tournament, optionally narrowed to a single team."""

    tournament_id: str
    team_id: str | None = None

    @property
    def room_key(self) -> str:
        """Stable key used in channel names."""
        return f"{self.tournament_id}:{self.team_id or GENERAL_ROOM}"

    @property
    def is_team_room(self) -> bool:
        return self.team_id is not None

    def row_filter(self) -> dict[str, str | None]:
        """Column equality predicate selecting this room's rows."""
        return {"tournament_id": self.tournament_id, "team_id": self.team_id}

    def matches(self, row: dict[str, Any]) -> bool:
        """True if a chat_messages row belongs to this room."""
        return (
            row.get("tournament_id") == self.tournament_id
            and (row.get("team_id") or None) == self.team_id
        )


class MessageKind(str, Enum):
    """Message variants."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VIDEO = "video"
    AUDIO = "audio"
    SYSTEM = "system"
    ANNOUNCEMENT = "announcement"


MEDIA_KINDS = frozenset(
    {MessageKind.IMAGE, MessageKind.FILE, MessageKind.VIDEO, MessageKind.AUDIO}
)


@dataclass
class Attachment:
    """A remote file referenced by a message."""

    url: str
    file_name: str
    file_size_bytes: int = 0
    mime_type: str = ""
    thumbnail_url: str | None = None
    duration_seconds: float | None = None


@dataclass
class MessageFlags:
    """Boolean message state."""

    is_edited: bool = False
    is_pinned: bool = False
    is_announcement: bool = False


@dataclass(frozen=True)
class Reaction:
    """Users who reacted with one emoji."""

    user_ids: frozenset[str] = frozenset()

    @property
    def count(self) -> int:
        return len(self.user_ids)


def toggle_reaction(
    reactions: dict[str, Reaction], emoji: str, user_id: str
) -> dict[str, Reaction]:
    """Return a new reaction map with user_id's emoji reaction toggled."""
    updated = dict(reactions)
    current = updated.get(emoji)

    if current is not None and user_id in current.user_ids:
        remaining = current.user_ids - {user_id}
        if remaining:
            updated[emoji] = Reaction(remaining)
        else:
            del updated[emoji]
    elif current is not None:
        updated[emoji] = Reaction(current.user_ids | {user_id})
    else:
        updated[emoji] = Reaction(frozenset({user_id}))

    return updated


@dataclass
class ChatMessage:
    """A single chat message in one conversation scope."""

    id: str
    scope: ConversationScope
    sender_id: str
    kind: MessageKind
    created_at: datetime
    body: str = ""
    sender_name: str | None = None
    attachment: Attachment | None = None
    edited_at: datetime | None = None
    flags: MessageFlags = field(default_factory=MessageFlags)
    reactions: dict[str, Reaction] = field(default_factory=dict)
    reply_to_id: str | None = None  # weak reference, may dangle
    client_ref: str | None = None
    pending: bool = False

    def __post_init__(self) -> None:
        self.kind = MessageKind(self.kind)
        if self.kind in MEDIA_KINDS:
            if self.attachment is None:
                raise ValueError(f"{self.kind.value} message requires an attachment")
        else:
            if not self.body or not self.body.strip():
                raise ValueError(f"{self.kind.value} message requires a body")
            if self.attachment is not None:
                raise ValueError(f"{self.kind.value} message cannot carry an attachment")

    @property
    def is_media(self) -> bool:
        return self.kind in MEDIA_KINDS

    def has_reacted(self, emoji: str, user_id: str) -> bool:
        reaction = self.reactions.get(emoji)
        return reaction is not None and user_id in reaction.user_ids


def _check_exhaustive(table: dict, name: str) -> None:
    missing = set(MessageKind) - set(table)
    if missing:
        raise RuntimeError(f"{name} does not handle kinds: {sorted(k.value for k in missing)}")


_PREVIEWS: dict[MessageKind, Callable[[ChatMessage], str]] = {
    MessageKind.TEXT: lambda m: m.body,
    MessageKind.SYSTEM: lambda m: m.body,
    MessageKind.ANNOUNCEMENT: lambda m: f"📢 {m.body}",
    MessageKind.IMAGE: lambda m: "📷 Photo",
    MessageKind.VIDEO: lambda m: "🎬 Video",
    MessageKind.AUDIO: lambda m: "🎤 Voice message",
    MessageKind.FILE: lambda m: f"📎 {m.attachment.file_name}",
}
_check_exhaustive(_PREVIEWS, "_PREVIEWS")


def preview_text(message: ChatMessage, max_length: int = 100) -> str:
    """Short human-readable summary of a message (notification body)."""
    text = _PREVIEWS[message.kind](message)
    if len(text) > max_length:
        return text[: max_length - 1] + "…"
    return text


# Row conversion

def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def reactions_from_row(value: Any) -> dict[str, Reaction]:
    """Accepts the list-of-{emoji, count, users} format (JSON text or decoded)."""
    if not value:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if isinstance(value, dict):
        value = [{"emoji": emoji, **entry} for emoji, entry in value.items()]

    reactions: dict[str, Reaction] = {}
    for entry in value:
        if not isinstance(entry, dict):
            raise TypeError(f"reaction entry is not an object: {entry!r}")
        users = frozenset(entry.get("users") or [])
        if users:
            reactions[entry["emoji"]] = Reaction(users)
    return reactions


def reactions_to_row(reactions: dict[str, Reaction]) -> list[dict[str, Any]]:
    """Serialize a reaction map to the stored list format."""
    return [
        {"emoji": emoji, "count": reaction.count, "users": sorted(reaction.user_ids)}
        for emoji, reaction in reactions.items()
    ]


def _attachment_from_row(row: dict[str, Any]) -> Attachment | None:
    if not row.get("file_url"):
        return None
    return Attachment(
        url=row["file_url"],
        file_name=row.get("file_name") or "",
        file_size_bytes=int(row.get("file_size") or 0),
        mime_type=row.get("file_type") or "",
        thumbnail_url=row.get("thumbnail_url") or None,
        duration_seconds=row.get("duration"),
    )


def _attachment_to_row(attachment: Attachment | None) -> dict[str, Any]:
    if attachment is None:
        return {
            "file_url": None,
            "file_name": None,
            "file_size": None,
            "file_type": None,
            "thumbnail_url": None,
            "duration": None,
        }
    return {
        "file_url": attachment.url,
        "file_name": attachment.file_name,
        "file_size": attachment.file_size_bytes,
        "file_type": attachment.mime_type,
        "thumbnail_url": attachment.thumbnail_url,
        "duration": attachment.duration_seconds,
    }


# Which columns carry the payload, per kind
_PAYLOAD_READERS: dict[MessageKind, Callable[[dict[str, Any]], Attachment | None]] = {
    MessageKind.TEXT: lambda row: None,
    MessageKind.SYSTEM: lambda row: None,
    MessageKind.ANNOUNCEMENT: lambda row: None,
    MessageKind.IMAGE: _attachment_from_row,
    MessageKind.FILE: _attachment_from_row,
    MessageKind.VIDEO: _attachment_from_row,
    MessageKind.AUDIO: _attachment_from_row,
}
_check_exhaustive(_PAYLOAD_READERS, "_PAYLOAD_READERS")


def message_from_row(row: dict[str, Any]) -> ChatMessage:
    """Build a ChatMessage from a chat_messages row. Raises ValueError if malformed."""
    try:
        kind = MessageKind(row.get("message_type") or MessageKind.TEXT.value)
        created_at = _parse_timestamp(row.get("created_at"))
        if created_at is None:
            raise ValueError("row has no created_at")

        return ChatMessage(
            id=str(row["id"]),
            scope=ConversationScope(
                tournament_id=str(row["tournament_id"]),
                team_id=row.get("team_id") or None,
            ),
            sender_id=str(row["sender_id"]),
            kind=kind,
            created_at=created_at,
            body=row.get("message") or "",
            sender_name=row.get("sender_name"),
            attachment=_PAYLOAD_READERS[kind](row),
            edited_at=_parse_timestamp(row.get("edited_at")),
            flags=MessageFlags(
                is_edited=bool(row.get("is_edited")),
                is_pinned=bool(row.get("is_pinned")),
                is_announcement=bool(row.get("is_announcement")),
            ),
            reactions=reactions_from_row(row.get("reactions")),
            reply_to_id=row.get("reply_to") or None,
            client_ref=row.get("client_ref") or None,
        )
    except (KeyError, TypeError, AttributeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed chat row: {e}") from e


def message_to_row(message: ChatMessage, include_id: bool = True) -> dict[str, Any]:
    """Serialize a ChatMessage to a chat_messages row."""
    row: dict[str, Any] = {
        "tournament_id": message.scope.tournament_id,
        "team_id": message.scope.team_id,
        "sender_id": message.sender_id,
        "sender_name": message.sender_name,
        "message": message.body,
        "message_type": message.kind.value,
        **_attachment_to_row(message.attachment),
        "reactions": reactions_to_row(message.reactions),
        "reply_to": message.reply_to_id,
        "is_edited": message.flags.is_edited,
        "edited_at": message.edited_at.isoformat() if message.edited_at else None,
        "is_pinned": message.flags.is_pinned,
        "is_announcement": message.flags.is_announcement,
        "client_ref": message.client_ref,
        "created_at": message.created_at.isoformat(),
    }
    if include_id:
        row["id"] = message.id
    return row
