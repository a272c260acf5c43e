"""Typing presence data models."""

from dataclasses import dataclass
from enum import Enum


class ComposeState(str, Enum):
    """Local user's composing state in one room."""

    IDLE = "idle"
    COMPOSING = "composing"


@dataclass
class TypingSignal:
    """Ephemeral 'is typing' marker for a remote user. Never persisted."""

    user_id: str
    display_name: str
    expires_at: float  # clock seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
