"""
User-facing notifications for the generation flow.

Collects success, info and error messages and fans them out to registered
callbacks (CLI printer, UI toast, test recorder).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Kinds of notification."""
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"
    CHANNEL_ERROR = "channel_error"


@dataclass
class Notification:
    """A single notification."""

    message: str
    type: NotificationType = NotificationType.INFO
    task_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_cli_line(self) -> str:
        """Format as a single CLI line."""
        icons = {
            NotificationType.SUCCESS: "✅",
            NotificationType.INFO: "ℹ️",
            NotificationType.ERROR: "❌",
            NotificationType.CHANNEL_ERROR: "🔌",
        }
        return f"{icons.get(self.type, '•')} {self.message}"


class Notifier:
    """
    Emits notifications to all registered callbacks.

    Usage:
        notifier = Notifier()
        notifier.on_event(lambda n: print(n.to_cli_line()))
        notifier.success("Video generated successfully")
    """

    def __init__(self):
        self._callbacks: list[Callable[[Notification], None]] = []
        self._history: list[Notification] = []

    def on_event(self, callback: Callable[[Notification], None]):
        """Register callback for notifications."""
        self._callbacks.append(callback)

    def _emit(self, notification: Notification):
        self._history.append(notification)

        for callback in self._callbacks:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification callback error: {e}")

    def success(self, message: str, task_id: Optional[str] = None, data: dict = None):
        self._emit(Notification(message, NotificationType.SUCCESS, task_id, data or {}))

    def info(self, message: str, task_id: Optional[str] = None, data: dict = None):
        self._emit(Notification(message, NotificationType.INFO, task_id, data or {}))

    def error(self, message: str, task_id: Optional[str] = None, data: dict = None):
        self._emit(Notification(message, NotificationType.ERROR, task_id, data or {}))

    def channel_error(self, message: str, task_id: Optional[str] = None):
        self._emit(Notification(message, NotificationType.CHANNEL_ERROR, task_id))

    def get_history(self) -> list[Notification]:
        """Get all notifications emitted so far."""
        return self._history.copy()
