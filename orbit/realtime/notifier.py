"""
Notification sinks.

Services publish typed notifications without knowing where they go. The
process default is the room hub; tests swap in InMemoryNotifier.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Protocol

from orbit.models.notification import Notification

logger = logging.getLogger("orbit.notifier")


class Notifier(Protocol):
    def publish(self, notification: Notification) -> None: ...


class InMemoryNotifier:
    """Records everything published, in order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._published: List[Notification] = []

    def publish(self, notification: Notification) -> None:
        with self._lock:
            self._published.append(notification)

    @property
    def published(self) -> List[Notification]:
        with self._lock:
            return list(self._published)

    def of_type(self, notification_type: str) -> List[Notification]:
        return [n for n in self.published if n.type == notification_type]

    def inbox(self, recipient_id: str) -> List[Notification]:
        return [n for n in self.published if n.recipient_id == recipient_id]

    def counts(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for n in self.published:
            totals[n.type] = totals.get(n.type, 0) + 1
        return totals

    def clear(self) -> None:
        with self._lock:
            self._published.clear()


def publish_all(notifier: Notifier, notifications: List[Notification]) -> int:
    """Best-effort fan-out. Returns how many were delivered to the notifier."""
    delivered = 0
    for notification in notifications:
        try:
            notifier.publish(notification)
            delivered += 1
        except Exception:
            logger.warning(
                "notification publish failed",
                exc_info=True,
                extra={"room_id": notification.room_id, "event_type": notification.type},
            )
    return delivered


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        from orbit.realtime.hub import hub

        _notifier = hub
    return _notifier


def set_notifier(notifier: Optional[Notifier]) -> None:
    global _notifier
    _notifier = notifier
