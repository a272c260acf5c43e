"""Toast sink implementation."""

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

from ..logging_config import get_logger
from ..models import Toast, ToastLevel

logger = get_logger(__name__)


class IToastSink(Protocol):
    """Short user-visible feedback for chat actions."""

    def success(self, text: str) -> None:
        ...

    def info(self, text: str) -> None:
        ...

    def error(self, text: str) -> None:
        ...


class ToastCenter:
    """Keeps the most recent toasts in memory and logs each one."""

    def __init__(self, max_toasts: int = 200):
        self._toasts: deque[Toast] = deque(maxlen=max_toasts)

    def success(self, text: str) -> None:
        self._push(ToastLevel.SUCCESS, text)

    def info(self, text: str) -> None:
        self._push(ToastLevel.INFO, text)

    def error(self, text: str) -> None:
        self._push(ToastLevel.ERROR, text)

    def _push(self, level: ToastLevel, text: str) -> None:
        toast = Toast(
            id=str(uuid.uuid4()),
            level=level,
            text=text,
            timestamp=datetime.now(timezone.utc),
        )
        self._toasts.append(toast)
        logger.info("Toast [%s]: %s", level.value, text)

    def recent(self, limit: int | None = None) -> list[Toast]:
        """Toasts in emission order, oldest first."""
        toasts = list(self._toasts)
        if limit is not None:
            toasts = toasts[-limit:]
        return toasts

    @property
    def last(self) -> Toast | None:
        return self._toasts[-1] if self._toasts else None

    @property
    def last_error(self) -> Toast | None:
        for toast in reversed(self._toasts):
            if toast.level == ToastLevel.ERROR:
                return toast
        return None

    def clear(self) -> None:
        self._toasts.clear()
