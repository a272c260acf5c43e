"""Backend module: BaaS ports and their implementations."""

from .factory import create_backend
from .local import LocalBackend
from .ports import (
    CHAT_MESSAGES_TABLE,
    ChangeEvent,
    ChangeType,
    ChannelHandle,
    ChannelStatus,
    IBackend,
    IChatTable,
    IObjectStorage,
    IRealtime,
)
from .supabase_backend import SupabaseBackend

__all__ = [
    "CHAT_MESSAGES_TABLE",
    "ChangeEvent",
    "ChangeType",
    "ChannelHandle",
    "ChannelStatus",
    "IBackend",
    "IChatTable",
    "IObjectStorage",
    "IRealtime",
    "LocalBackend",
    "SupabaseBackend",
    "create_backend",
]
