"""User-visible notifications (toasts) raised by the agents."""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal, Optional

logger = logging.getLogger(__name__)

Level = Literal["info", "error"]


@dataclass(frozen=True)
class Notification:
    """A single toast shown to the user."""

    level: Level
    title: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """
    Collects notifications and fans them out to listeners.

    Keeps the most recent `capacity` notifications for UI rendering.
    PRIVACY: messages must never contain coordinates or key material.
    """

    def __init__(self, capacity: int = 50) -> None:
        self._items: deque[Notification] = deque(maxlen=capacity)
        self._listeners: list[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        self._listeners.append(listener)

    def info(self, title: str, message: str) -> Notification:
        return self._emit(Notification(level="info", title=title, message=message))

    def error(self, title: str, message: str) -> Notification:
        return self._emit(Notification(level="error", title=title, message=message))

    def _emit(self, notification: Notification) -> Notification:
        self._items.append(notification)
        log = logger.warning if notification.level == "error" else logger.info
        log(f"{notification.title}: {notification.message}")

        for listener in self._listeners:
            try:
                listener(notification)
            except Exception as e:
                logger.warning(f"Notification listener failed: {type(e).__name__}: {e}")
        return notification

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def errors(self) -> list[Notification]:
        return [n for n in self._items if n.level == "error"]

    def latest(self) -> Optional[Notification]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()
