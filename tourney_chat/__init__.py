"""Tournament chat core."""

from .app import Application, IApplication
from .backend import IBackend, LocalBackend, SupabaseBackend, create_backend
from .chat import (
    AttachmentUploader,
    ChatSession,
    MessageComposer,
    MessageFilter,
    MessageStore,
    ReactionMode,
    SubscriptionManager,
    TypingPresence,
)
from .config import ChatSettings
from .errors import BackendError, ChatPermissionError
from .feedback import LogNotifier, ToastCenter
from .models import (
    Attachment,
    ChatMessage,
    ConversationScope,
    CurrentUser,
    MessageKind,
    Reaction,
    Role,
    TypingSignal,
)

__all__ = [
    # Application
    "Application",
    "IApplication",
    "ChatSettings",
    # Models
    "Attachment",
    "ChatMessage",
    "ConversationScope",
    "CurrentUser",
    "MessageKind",
    "Reaction",
    "Role",
    "TypingSignal",
    # Backends
    "IBackend",
    "LocalBackend",
    "SupabaseBackend",
    "create_backend",
    # Components
    "AttachmentUploader",
    "ChatSession",
    "MessageComposer",
    "MessageFilter",
    "MessageStore",
    "ReactionMode",
    "SubscriptionManager",
    "TypingPresence",
    "LogNotifier",
    "ToastCenter",
    # Errors
    "BackendError",
    "ChatPermissionError",
]
