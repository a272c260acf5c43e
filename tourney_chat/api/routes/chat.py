"""Chat API routes."""

import base64
import binascii
from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...chat import ACCESS_DENIED_TOAST, ChatSession, LocalFile, MessageFilter
from ...feedback import ToastCenter
from ...models import ChatMessage, ConversationScope, CurrentUser, Role, Toast


class OpenSessionRequest(BaseModel):
    """Request model for opening a chat session."""

    user_id: str
    display_name: str
    role: Role = Role.PLAYER
    tournament_id: str
    team_id: str | None = None
    organizer_id: str | None = None


class SessionResponse(BaseModel):
    """Response model for a chat session."""

    session_id: str
    room_key: str
    is_open: bool
    muted: bool


class AttachmentResponse(BaseModel):
    """Response model for an attachment."""

    url: str
    file_name: str
    file_size_bytes: int
    mime_type: str
    thumbnail_url: str | None = None
    duration_seconds: float | None = None


class MessageResponse(BaseModel):
    """Response model for a chat message."""

    id: str
    tournament_id: str
    team_id: str | None = None
    sender_id: str
    sender_name: str | None = None
    kind: str
    body: str
    attachment: AttachmentResponse | None = None
    created_at: datetime
    edited_at: datetime | None = None
    is_edited: bool
    is_pinned: bool
    is_announcement: bool
    reactions: dict[str, list[str]]
    reply_to_id: str | None = None
    pending: bool


class SendMessageRequest(BaseModel):
    """Request model for sending a text message."""

    body: str
    reply_to_id: str | None = None


class SendFileRequest(BaseModel):
    """Request model for sending a file (base64 content)."""

    file_name: str
    mime_type: str = "application/octet-stream"
    content_base64: str


class EditMessageRequest(BaseModel):
    """Request model for editing a message."""

    body: str


class ReactionRequest(BaseModel):
    """Request model for toggling a reaction."""

    emoji: str


class PinRequest(BaseModel):
    """Request model for pinning a message."""

    is_pinned: bool = True


class AnnouncementRequest(BaseModel):
    """Request model for an announcement."""

    body: str


class TypingRequest(BaseModel):
    """Request model for input box changes."""

    text: str


class TypingResponse(BaseModel):
    """Response model for typing presence."""

    label: str
    users: list[str]


class FlagRequest(BaseModel):
    """Request model for boolean session toggles."""

    value: bool


class ScopeRequest(BaseModel):
    """Request model for switching rooms."""

    team_id: str | None = None


class ToastResponse(BaseModel):
    """Response model for a toast."""

    id: str
    level: str
    text: str
    timestamp: datetime


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


def _message_to_response(message: ChatMessage) -> dict:
    attachment = message.attachment
    return {
        "id": message.id,
        "tournament_id": message.scope.tournament_id,
        "team_id": message.scope.team_id,
        "sender_id": message.sender_id,
        "sender_name": message.sender_name,
        "kind": message.kind.value,
        "body": message.body,
        "attachment": (
            {
                "url": attachment.url,
                "file_name": attachment.file_name,
                "file_size_bytes": attachment.file_size_bytes,
                "mime_type": attachment.mime_type,
                "thumbnail_url": attachment.thumbnail_url,
                "duration_seconds": attachment.duration_seconds,
            }
            if attachment
            else None
        ),
        "created_at": message.created_at,
        "edited_at": message.edited_at,
        "is_edited": message.flags.is_edited,
        "is_pinned": message.flags.is_pinned,
        "is_announcement": message.flags.is_announcement,
        "reactions": {
            emoji: sorted(reaction.user_ids) for emoji, reaction in message.reactions.items()
        },
        "reply_to_id": message.reply_to_id,
        "pending": message.pending,
    }


def _session_response(session_id: str, session: ChatSession) -> dict:
    return {
        "session_id": session_id,
        "room_key": session.scope.room_key,
        "is_open": session.is_open,
        "muted": session.muted,
    }


def _last_error(session: ChatSession) -> Toast | None:
    if isinstance(session.toasts, ToastCenter):
        return session.toasts.last_error
    return None


def _last_error_text(session: ChatSession, fallback: str) -> str:
    error = _last_error(session)
    return error.text if error else fallback


def _failure(session: ChatSession, fallback: str, before: Toast | None) -> HTTPException:
    """400 carrying the text of the error toast raised since `before`."""
    error = _last_error(session)
    detail = error.text if error is not None and error is not before else fallback
    return HTTPException(status_code=400, detail=detail)


def _stored(session: ChatSession, message_id: str) -> dict:
    # A delete echo can land while the write is awaited
    message = session.store.get(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return _message_to_response(message)


def create_chat_router(app: Application) -> APIRouter:
    """Create chat router."""
    router = APIRouter(prefix="/api/chat", tags=["chat"])

    def get_session(session_id: str) -> ChatSession:
        session = app.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    @router.post("/sessions", response_model=SessionResponse)
    async def open_session(request: OpenSessionRequest) -> dict:
        """Open a chat session for a user in a tournament or team room."""
        user = CurrentUser(
            id=request.user_id, display_name=request.display_name, role=request.role
        )
        scope = ConversationScope(request.tournament_id, request.team_id)
        session_id, session = await app.open_session(
            user, scope, organizer_id=request.organizer_id
        )
        if not session.is_open:
            detail = _last_error_text(session, "Failed to open chat")
            await app.close_session(session_id)
            status_code = 403 if detail == ACCESS_DENIED_TOAST else 400
            raise HTTPException(status_code=status_code, detail=detail)
        return _session_response(session_id, session)

    @router.delete("/sessions/{session_id}", response_model=StatusResponse)
    async def close_session(session_id: str) -> dict:
        """Close a chat session."""
        if not await app.close_session(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"status": "ok"}

    @router.post("/sessions/{session_id}/scope", response_model=SessionResponse)
    async def switch_scope(session_id: str, request: ScopeRequest) -> dict:
        """Switch the session to another room of the same tournament."""
        session = get_session(session_id)
        scope = ConversationScope(session.scope.tournament_id, request.team_id)
        before = _last_error(session)
        if not await session.switch_scope(scope):
            raise _failure(session, "Failed to switch chat", before)
        return _session_response(session_id, session)

    @router.get("/sessions/{session_id}/messages", response_model=list[MessageResponse])
    async def list_messages(
        session_id: str,
        q: str = Query("", description="Search text (body or sender name)"),
        message_filter: MessageFilter = Query(
            MessageFilter.ALL, alias="filter", description="Filter tab"
        ),
    ) -> list[dict]:
        """Messages of the session's room, oldest first."""
        session = get_session(session_id)
        messages = session.store.filter_messages(message_filter, q)
        return [_message_to_response(m) for m in messages]

    @router.post("/sessions/{session_id}/messages", response_model=MessageResponse)
    async def send_message(session_id: str, request: SendMessageRequest) -> dict:
        """Send a text message."""
        session = get_session(session_id)
        before = _last_error(session)
        message = await session.composer.send(request.body, reply_to_id=request.reply_to_id)
        if message is None:
            raise _failure(session, "Failed to send message", before)
        return _message_to_response(message)

    @router.post("/sessions/{session_id}/files", response_model=MessageResponse)
    async def send_file(session_id: str, request: SendFileRequest) -> dict:
        """Upload a file and send it as a media message."""
        session = get_session(session_id)
        try:
            data = base64.b64decode(request.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="Invalid base64 content")

        file = LocalFile(file_name=request.file_name, data=data, mime_type=request.mime_type)
        before = _last_error(session)
        message = await session.composer.send_file(file)
        if message is None:
            raise _failure(session, "Failed to upload file", before)
        return _message_to_response(message)

    @router.patch(
        "/sessions/{session_id}/messages/{message_id}", response_model=MessageResponse
    )
    async def edit_message(
        session_id: str, message_id: str, request: EditMessageRequest
    ) -> dict:
        """Edit one of the user's own messages."""
        session = get_session(session_id)
        before = _last_error(session)
        if not await session.composer.edit(message_id, request.body):
            raise _failure(session, "Failed to update message", before)
        return _stored(session, message_id)

    @router.delete(
        "/sessions/{session_id}/messages/{message_id}", response_model=StatusResponse
    )
    async def delete_message(session_id: str, message_id: str) -> dict:
        """Delete a message."""
        session = get_session(session_id)
        before = _last_error(session)
        if not await session.composer.delete(message_id):
            raise _failure(session, "Failed to delete message", before)
        return {"status": "ok"}

    @router.post(
        "/sessions/{session_id}/messages/{message_id}/reactions",
        response_model=MessageResponse,
    )
    async def toggle_reaction(
        session_id: str, message_id: str, request: ReactionRequest
    ) -> dict:
        """Toggle the user's reaction."""
        session = get_session(session_id)
        before = _last_error(session)
        if not await session.composer.react(message_id, request.emoji):
            raise _failure(session, "Failed to update reaction", before)
        return _stored(session, message_id)

    @router.post(
        "/sessions/{session_id}/messages/{message_id}/pin", response_model=MessageResponse
    )
    async def pin_message(session_id: str, message_id: str, request: PinRequest) -> dict:
        """Pin or unpin a message."""
        session = get_session(session_id)
        before = _last_error(session)
        if not await session.composer.pin(message_id, request.is_pinned):
            raise _failure(session, "Failed to pin message", before)
        return _stored(session, message_id)

    @router.post("/sessions/{session_id}/announcements", response_model=MessageResponse)
    async def announce(session_id: str, request: AnnouncementRequest) -> dict:
        """Post an announcement (organizers and admins)."""
        session = get_session(session_id)
        before = _last_error(session)
        message = await session.composer.announce(request.body)
        if message is None:
            raise _failure(session, "Failed to send message", before)
        return _message_to_response(message)

    @router.get("/sessions/{session_id}/typing", response_model=TypingResponse)
    async def get_typing(session_id: str) -> dict:
        """Remote users currently typing."""
        session = get_session(session_id)
        users = session.presence.typing_users()
        return {
            "label": session.presence.typing_label(),
            "users": [signal.display_name for signal in users],
        }

    @router.post("/sessions/{session_id}/typing", response_model=StatusResponse)
    async def update_draft(session_id: str, request: TypingRequest) -> dict:
        """Report input box changes (drives the typing indicator)."""
        session = get_session(session_id)
        await session.composer.update_draft(request.text)
        return {"status": "ok"}

    @router.post("/sessions/{session_id}/mute", response_model=SessionResponse)
    async def set_muted(session_id: str, request: FlagRequest) -> dict:
        """Mute or unmute notifications for the session."""
        session = get_session(session_id)
        session.set_muted(request.value)
        return _session_response(session_id, session)

    @router.post("/sessions/{session_id}/focus", response_model=StatusResponse)
    async def set_focused(session_id: str, request: FlagRequest) -> dict:
        """Mark the chat view as focused (suppresses notifications)."""
        session = get_session(session_id)
        session.set_focused(request.value)
        return {"status": "ok"}

    @router.get("/sessions/{session_id}/toasts", response_model=list[ToastResponse])
    async def get_toasts(
        session_id: str, limit: int = Query(50, ge=1, le=200)
    ) -> list[dict]:
        """Recent toasts of the session, oldest first."""
        session = get_session(session_id)
        if not isinstance(session.toasts, ToastCenter):
            return []
        return [
            {
                "id": t.id,
                "level": t.level.value,
                "text": t.text,
                "timestamp": t.timestamp,
            }
            for t in session.toasts.recent(limit)
        ]

    return router
