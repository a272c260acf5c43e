"""Local notification surface."""

from typing import Protocol

from ..logging_config import get_logger

logger = get_logger(__name__)


class INotifier(Protocol):
    """Platform notification surface (desktop/browser notification)."""

    def notify(self, title: str, body: str) -> None:
        """Show a local notification."""
        ...


class LogNotifier:
    """Writes notifications to the log; stands in for the platform surface."""

    def notify(self, title: str, body: str) -> None:
        logger.info("Notification: %s | %s", title, body)
