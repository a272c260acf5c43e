"""Feedback module: toasts and local notifications."""

from .notifier import INotifier, LogNotifier
from .toasts import IToastSink, ToastCenter

__all__ = [
    "INotifier",
    "IToastSink",
    "LogNotifier",
    "ToastCenter",
]
