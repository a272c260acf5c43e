"""Core data models for the tournament chat."""

from .messages import (
    GENERAL_ROOM,
    MEDIA_KINDS,
    Attachment,
    ChatMessage,
    ConversationScope,
    MessageFlags,
    MessageKind,
    Reaction,
    message_from_row,
    message_to_row,
    preview_text,
    reactions_from_row,
    reactions_to_row,
    toggle_reaction,
)
from .presence import ComposeState, TypingSignal
from .users import CurrentUser, Role
from .feedback import Toast, ToastLevel

__all__ = [
    # Messages
    "GENERAL_ROOM",
    "MEDIA_KINDS",
    "Attachment",
    "ChatMessage",
    "ConversationScope",
    "MessageFlags",
    "MessageKind",
    "Reaction",
    "message_from_row",
    "message_to_row",
    "preview_text",
    "reactions_from_row",
    "reactions_to_row",
    "toggle_reaction",
    # Presence
    "ComposeState",
    "TypingSignal",
    # Users
    "CurrentUser",
    "Role",
    # Feedback
    "Toast",
    "ToastLevel",
]
