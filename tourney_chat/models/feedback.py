"""User feedback data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ToastLevel(str, Enum):
    """Toast severity."""

    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


@dataclass
class Toast:
    """A short user-visible message (success or failure of an action)."""

    id: str
    level: ToastLevel
    text: str
    timestamp: datetime
