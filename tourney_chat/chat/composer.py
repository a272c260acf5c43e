"""Message composer implementation."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from ..backend.ports import IChatTable
from ..errors import ChatPermissionError
from ..feedback import IToastSink
from ..logging_config import get_logger
from ..models import (
    Attachment,
    ChatMessage,
    CurrentUser,
    MessageFlags,
    MessageKind,
    Role,
    message_from_row,
    message_to_row,
    reactions_to_row,
    toggle_reaction,
)
from .presence import TypingPresence
from .store import MessageStore
from .uploader import AttachmentUploader, LocalFile, kind_for_mime

logger = get_logger(__name__)

PENDING_ID_PREFIX = "tmp-"
CHAT_FILES_FOLDER = "chat-files"


class ReactionMode(str, Enum):
    """How reaction toggles are written."""

    ATOMIC = "atomic"  # server-side toggle, concurrent toggles never lost
    FULL_MAP = "full_map"  # write the whole map from last-known state (last write wins)


class IMessageComposer(Protocol):
    """User-initiated chat writes. Failures become toasts, never exceptions."""

    async def send(
        self,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        attachment: Attachment | None = None,
        reply_to_id: str | None = None,
    ) -> ChatMessage | None:
        """Send a message. Returns the stored message, or None on failure."""
        ...

    async def edit(self, message_id: str, new_body: str) -> bool:
        ...

    async def delete(self, message_id: str) -> bool:
        ...

    async def react(self, message_id: str, emoji: str) -> bool:
        ...

    async def pin(self, message_id: str, is_pinned: bool = True) -> bool:
        ...


class MessageComposer:
    """Writes chat changes for one user in one room.

    Sends are optimistic: a pending copy shows up in the store at once and is
    replaced by the server row (from the insert response or the realtime
    echo, whichever arrives first).
    """

    def __init__(
        self,
        table: IChatTable,
        store: MessageStore,
        user: CurrentUser,
        toasts: IToastSink,
        uploader: AttachmentUploader | None = None,
        presence: TypingPresence | None = None,
        reaction_mode: ReactionMode = ReactionMode.ATOMIC,
        organizer_id: str | None = None,
    ):
        self._table = table
        self._store = store
        self._user = user
        self._toasts = toasts
        self._uploader = uploader
        self._presence = presence
        self._reaction_mode = ReactionMode(reaction_mode)
        self._organizer_id = organizer_id

        self._draft = ""
        self._reply_to_id: str | None = None
        self._sending = False

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def reply_to_id(self) -> str | None:
        return self._reply_to_id

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def reaction_mode(self) -> ReactionMode:
        return self._reaction_mode

    # Sending
    async def send(
        self,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        attachment: Attachment | None = None,
        reply_to_id: str | None = None,
        is_announcement: bool = False,
    ) -> ChatMessage | None:
        if self._sending:
            logger.info("Send ignored, another send is in progress")
            return None

        self._sending = True
        try:
            return await self._send(body, kind, attachment, reply_to_id, is_announcement)
        finally:
            self._sending = False

    async def _send(
        self,
        body: str,
        kind: MessageKind,
        attachment: Attachment | None,
        reply_to_id: str | None,
        is_announcement: bool,
    ) -> ChatMessage | None:
        client_ref = str(uuid.uuid4())
        try:
            pending = ChatMessage(
                id=f"{PENDING_ID_PREFIX}{client_ref}",
                scope=self._store.scope,
                sender_id=self._user.id,
                sender_name=self._user.display_name,
                kind=kind,
                body=body.strip(),
                attachment=attachment,
                created_at=datetime.now(timezone.utc),
                flags=MessageFlags(is_announcement=is_announcement),
                reply_to_id=reply_to_id,
                client_ref=client_ref,
                pending=True,
            )
        except ValueError as e:
            logger.info("Rejected outgoing message: %s", e)
            self._toasts.error("Message cannot be empty")
            return None

        self._store.add_pending(pending)

        row = message_to_row(pending, include_id=False)
        del row["created_at"]  # assigned by the backend
        try:
            stored = await self._table.insert_message(row)
        except Exception as e:
            self._store.discard_pending(pending.id)
            logger.error("Failed to send message: %s", e, exc_info=True)
            self._toasts.error("Failed to send message")
            return None

        message = self._apply_stored(stored, insert=True)

        if self._presence is not None:
            await self._presence.message_sent()
        if message is None:
            return pending
        return self._store.get(message.id) or message

    async def update_draft(self, text: str) -> None:
        """Store the input box text and drive typing presence."""
        self._draft = text
        if self._presence is not None:
            await self._presence.input_changed(text)

    def set_reply_to(self, message_id: str | None) -> None:
        self._reply_to_id = message_id

    async def send_draft(self) -> ChatMessage | None:
        """Send the draft. The draft is cleared only if the send succeeds."""
        message = await self.send(self._draft, reply_to_id=self._reply_to_id)
        if message is not None:
            self._draft = ""
            self._reply_to_id = None
        return message

    async def send_file(self, file: LocalFile) -> ChatMessage | None:
        """Upload a file and send it as a media message named after the file."""
        if self._uploader is None:
            raise RuntimeError("Uploader not configured")
        if self._sending:
            logger.info("File send ignored, another send is in progress")
            return None

        # Held across the upload so a second submission never stores an object
        self._sending = True
        try:
            return await self._send_file(file)
        finally:
            self._sending = False

    async def _send_file(self, file: LocalFile) -> ChatMessage | None:
        result = await self._uploader.upload(
            file, folder=f"{CHAT_FILES_FOLDER}/{self._store.scope.tournament_id}"
        )
        if not result.success:
            logger.warning("Upload of %s failed: %s", file.file_name, result.error)
            self._toasts.error("Failed to upload file")
            return None

        kind = kind_for_mime(file.mime_type)
        attachment = Attachment(
            url=result.url,
            file_name=file.file_name,
            file_size_bytes=file.size,
            mime_type=file.mime_type,
            thumbnail_url=result.url if kind in (MessageKind.IMAGE, MessageKind.VIDEO) else None,
        )
        message = await self._send(
            file.file_name, kind, attachment, self._reply_to_id, is_announcement=False
        )
        if message is not None:
            self._reply_to_id = None
            self._toasts.success("File uploaded successfully")
        return message

    async def announce(self, body: str) -> ChatMessage | None:
        try:
            self._require(
                self._is_tournament_organizer() or self._user.is_admin,
                "Only organizers can post announcements",
            )
        except ChatPermissionError as e:
            self._deny(e)
            return None
        return await self.send(body, kind=MessageKind.ANNOUNCEMENT, is_announcement=True)

    # Editing and moderation
    async def edit(self, message_id: str, new_body: str) -> bool:
        message = self._existing(message_id, "Failed to update message")
        if message is None:
            return False
        try:
            self._require(
                message.sender_id == self._user.id, "You can only edit your own messages"
            )
        except ChatPermissionError as e:
            self._deny(e)
            return False
        if not new_body.strip():
            self._toasts.error("Message cannot be empty")
            return False

        changes = {
            "message": new_body.strip(),
            "is_edited": True,
            "edited_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            stored = await self._table.update_message(message_id, changes)
        except Exception as e:
            logger.error("Failed to update message %s: %s", message_id, e, exc_info=True)
            self._toasts.error("Failed to update message")
            return False

        self._apply_stored(stored)
        self._toasts.success("Message updated")
        return True

    async def delete(self, message_id: str) -> bool:
        message = self._existing(message_id, "Failed to delete message")
        if message is None:
            return False
        try:
            self._require(
                message.sender_id == self._user.id
                or self._is_tournament_organizer()
                or self._user.is_admin,
                "You cannot delete this message",
            )
        except ChatPermissionError as e:
            self._deny(e)
            return False

        try:
            await self._table.delete_message(message_id)
        except Exception as e:
            logger.error("Failed to delete message %s: %s", message_id, e, exc_info=True)
            self._toasts.error("Failed to delete message")
            return False

        # Replies to this message keep their dangling reply_to_id
        self._store.apply_delete(message_id)
        self._toasts.success("Message deleted")
        return True

    async def pin(self, message_id: str, is_pinned: bool = True) -> bool:
        message = self._existing(message_id, "Failed to pin message")
        if message is None:
            return False
        try:
            self._require(
                self._is_tournament_organizer()
                or self._user.is_admin
                or self._user.is_moderator,
                "Only organizers and moderators can pin messages",
            )
        except ChatPermissionError as e:
            self._deny(e)
            return False

        try:
            stored = await self._table.update_message(message_id, {"is_pinned": is_pinned})
        except Exception as e:
            logger.error("Failed to pin message %s: %s", message_id, e, exc_info=True)
            self._toasts.error("Failed to pin message")
            return False

        self._apply_stored(stored)
        self._toasts.success("Message pinned!" if is_pinned else "Message unpinned!")
        return True

    # Reactions
    async def react(self, message_id: str, emoji: str) -> bool:
        """Toggle the current user's `emoji` reaction on a message."""
        message = self._existing(message_id, "Failed to update reaction")
        if message is None:
            return False

        try:
            if self._reaction_mode == ReactionMode.ATOMIC:
                stored = await self._table.toggle_reaction(message_id, emoji, self._user.id)
            else:
                reactions = toggle_reaction(message.reactions, emoji, self._user.id)
                stored = await self._table.update_message(
                    message_id, {"reactions": reactions_to_row(reactions)}
                )
        except Exception as e:
            logger.error("Failed to update reaction on %s: %s", message_id, e, exc_info=True)
            self._toasts.error("Failed to update reaction")
            return False

        self._apply_stored(stored)
        return True

    # Helpers
    def _is_tournament_organizer(self) -> bool:
        if self._organizer_id is not None:
            return self._user.id == self._organizer_id
        return self._user.role == Role.ORGANIZER

    @staticmethod
    def _require(allowed: bool, reason: str) -> None:
        if not allowed:
            raise ChatPermissionError(reason)

    def _deny(self, error: ChatPermissionError) -> None:
        logger.info("Denied for %s: %s", self._user.id, error)
        self._toasts.error(str(error))

    def _existing(self, message_id: str, failure_text: str) -> ChatMessage | None:
        message = self._store.get(message_id)
        if message is None or message.pending:
            logger.info("No confirmed message %s in %s", message_id, self._store.scope.room_key)
            self._toasts.error(failure_text)
            return None
        return message

    def _apply_stored(self, row: dict[str, Any], insert: bool = False) -> ChatMessage | None:
        """Fold a row returned by a write into the store (the echo may already have)."""
        try:
            message = message_from_row(row)
        except ValueError as e:
            logger.warning("Backend returned a malformed row: %s", e)
            return None
        if insert:
            self._store.apply_insert(message)
        else:
            self._store.apply_update(message)
        return message
