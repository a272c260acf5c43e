"""MessageStore implementation."""

from enum import Enum
from typing import Protocol

from ..backend.ports import IChatTable
from ..logging_config import get_logger
from ..models import ChatMessage, ConversationScope, MessageKind, message_from_row

logger = get_logger(__name__)


def _matches_query(message: ChatMessage, needle: str) -> bool:
    return needle in message.body.lower() or needle in (message.sender_name or "").lower()


class MessageFilter(str, Enum):
    """Chat view filter tabs."""

    ALL = "all"
    PINNED = "pinned"
    ANNOUNCEMENTS = "announcements"


class IMessageStore(Protocol):
    """Ordered in-memory message list for one conversation scope."""

    @property
    def scope(self) -> ConversationScope:
        ...

    async def load(self, limit: int | None = None) -> bool:
        """Replace contents with the newest `limit` messages, oldest first."""
        ...

    def apply_insert(self, message: ChatMessage) -> bool:
        """Append a message (or reconcile a pending one). False if it was a no-op."""
        ...

    def apply_update(self, message: ChatMessage) -> bool:
        """Replace a message in place. False if it was a no-op."""
        ...

    def apply_delete(self, message_id: str) -> bool:
        """Remove a message. False if it was a no-op."""
        ...

    def get_all(self) -> list[ChatMessage]:
        """Messages in display order (oldest first)."""
        ...


class MessageStore:
    """Messages of one room, oldest first, newest last.

    Insertions append in receipt order; the store never re-sorts, so
    chronological order relies on the backend delivering in commit order.
    """

    def __init__(self, table: IChatTable, scope: ConversationScope, limit: int = 100):
        self._table = table
        self._scope = scope
        self._limit = limit
        self._messages: list[ChatMessage] = []

    @property
    def scope(self) -> ConversationScope:
        return self._scope

    def __len__(self) -> int:
        return len(self._messages)

    async def load(self, limit: int | None = None) -> bool:
        """Replace contents with the newest `limit` messages, oldest first.

        On failure the previous contents are kept and False is returned.
        Pending optimistic messages survive the reload unless the server
        already has them.
        """
        try:
            rows = await self._table.select_messages(self._scope, limit or self._limit)
        except Exception as e:
            logger.error(
                "Failed to load messages for %s: %s",
                self._scope.room_key,
                e,
                exc_info=True,
            )
            return False

        loaded: list[ChatMessage] = []
        seen: set[str] = set()
        # Rows come newest first
        for row in reversed(rows):
            try:
                message = message_from_row(row)
            except ValueError as e:
                logger.warning("Dropping malformed row in %s: %s", self._scope.room_key, e)
                continue
            if message.scope != self._scope or message.id in seen:
                continue
            seen.add(message.id)
            loaded.append(message)

        confirmed_refs = {m.client_ref for m in loaded if m.client_ref}
        pending = [
            m for m in self._messages if m.pending and m.client_ref not in confirmed_refs
        ]
        self._messages = loaded + pending
        logger.debug("Loaded %d messages for %s", len(loaded), self._scope.room_key)
        return True

    def apply_insert(self, message: ChatMessage) -> bool:
        """Append a server message, or swap it in for its pending twin."""
        if message.scope != self._scope:
            return False
        if self._index_of(message.id) is not None:
            return False

        if message.client_ref:
            for i, existing in enumerate(self._messages):
                if existing.pending and existing.client_ref == message.client_ref:
                    self._messages[i] = message
                    return True

        self._messages.append(message)
        return True

    def apply_update(self, message: ChatMessage) -> bool:
        """Replace by id, keeping the position. Updates for unknown ids are dropped."""
        if message.scope != self._scope:
            return False
        index = self._index_of(message.id)
        if index is None:
            return False
        self._messages[index] = message
        return True

    def apply_delete(self, message_id: str) -> bool:
        index = self._index_of(message_id)
        if index is None:
            return False
        del self._messages[index]
        return True

    def add_pending(self, message: ChatMessage) -> None:
        """Show an optimistic message until the server confirms it."""
        if not message.pending:
            raise ValueError("add_pending() expects a pending message")
        if message.scope != self._scope:
            raise ValueError(
                f"Message scope {message.scope.room_key} does not match {self._scope.room_key}"
            )
        self._messages.append(message)

    def discard_pending(self, temp_id: str) -> bool:
        index = self._index_of(temp_id)
        if index is None or not self._messages[index].pending:
            return False
        del self._messages[index]
        return True

    def get(self, message_id: str) -> ChatMessage | None:
        index = self._index_of(message_id)
        return self._messages[index] if index is not None else None

    def get_all(self) -> list[ChatMessage]:
        return list(self._messages)

    def pinned(self) -> list[ChatMessage]:
        return [m for m in self._messages if m.flags.is_pinned]

    def announcements(self) -> list[ChatMessage]:
        return [
            m
            for m in self._messages
            if m.flags.is_announcement or m.kind == MessageKind.ANNOUNCEMENT
        ]

    def search(self, query: str) -> list[ChatMessage]:
        """Case-insensitive match over body and sender name."""
        needle = query.strip().lower()
        if not needle:
            return self.get_all()
        return [m for m in self._messages if _matches_query(m, needle)]

    def filter_messages(
        self, message_filter: MessageFilter = MessageFilter.ALL, query: str = ""
    ) -> list[ChatMessage]:
        """Filter tab plus search box, as the chat view combines them."""
        if message_filter == MessageFilter.PINNED:
            messages = self.pinned()
        elif message_filter == MessageFilter.ANNOUNCEMENTS:
            messages = self.announcements()
        else:
            messages = self.get_all()

        needle = query.strip().lower()
        if not needle:
            return messages
        return [m for m in messages if _matches_query(m, needle)]

    def clear(self) -> None:
        self._messages.clear()

    def _index_of(self, message_id: str) -> int | None:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                return i
        return None
