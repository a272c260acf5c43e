"""Chat module: store, realtime sync, presence, composer, uploads."""

from .composer import IMessageComposer, MessageComposer, ReactionMode
from .presence import ITypingPresence, TypingPresence, typing_channel_key
from .session import ACCESS_DENIED_TOAST, LOAD_FAILED_TOAST, ChatSession
from .store import IMessageStore, MessageFilter, MessageStore
from .subscription import (
    ISubscriptionManager,
    SubscriptionHandle,
    SubscriptionManager,
    chat_channel_key,
    reconnect_delay,
)
from .uploader import (
    AttachmentUploader,
    FileCategory,
    LocalFile,
    UploadResult,
    format_file_size,
    kind_for_mime,
)

__all__ = [
    "ACCESS_DENIED_TOAST",
    "LOAD_FAILED_TOAST",
    "AttachmentUploader",
    "ChatSession",
    "FileCategory",
    "IMessageComposer",
    "IMessageStore",
    "ISubscriptionManager",
    "ITypingPresence",
    "LocalFile",
    "MessageComposer",
    "MessageFilter",
    "MessageStore",
    "ReactionMode",
    "SubscriptionHandle",
    "SubscriptionManager",
    "TypingPresence",
    "UploadResult",
    "chat_channel_key",
    "format_file_size",
    "kind_for_mime",
    "reconnect_delay",
    "typing_channel_key",
]
