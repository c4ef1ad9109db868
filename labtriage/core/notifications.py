"""
User-facing notifications

The dashboard shows short toasts when a data source falls back, fails or
changes authentication state. Services publish Notification values onto a
NotificationBus; the UI layer subscribes and decides how to render them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from labtriage.core.logging import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    """Notification severity"""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """A single user-visible message"""

    level: NotificationLevel
    message: str
    source: Optional[str] = None  # Data source the message is about
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
        }


NotificationHandler = Callable[[Notification], Awaitable[None]]


class NotificationBus:
    """
    In-process pub/sub for notifications.

    Keeps a bounded history so late subscribers (or tests) can inspect what
    was published.
    """

    def __init__(self, max_history: int = 200):
        self._handlers: List[NotificationHandler] = []
        self._history: List[Notification] = []
        self._max_history = max_history

    def subscribe(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: NotificationHandler) -> bool:
        if handler in self._handlers:
            self._handlers.remove(handler)
            return True
        return False

    async def publish(self, notification: Notification) -> None:
        """Record the notification and hand it to every subscriber."""
        self._history.append(notification)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        logger.debug(
            "notification_published",
            level=notification.level.value,
            message=notification.message,
            source=notification.source,
        )

        for handler in list(self._handlers):
            try:
                await handler(notification)
            except Exception as e:
                # Subscriber failures never reach the publisher
                logger.error("notification_handler_failed", error=str(e))

    def get_history(self, limit: Optional[int] = None) -> List[Notification]:
        if limit is None:
            return list(self._history)
        return self._history[-limit:]

    def clear_history(self) -> None:
        self._history.clear()


_notification_bus: Optional[NotificationBus] = None


def get_notification_bus() -> NotificationBus:
    """Get or create the global notification bus"""
    global _notification_bus

    if _notification_bus is None:
        _notification_bus = NotificationBus()

    return _notification_bus


__all__ = [
    "Notification",
    "NotificationBus",
    "NotificationLevel",
    "get_notification_bus",
]
