"""Pending alert queue with id de-duplication and per-entry expiry."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from .models import Notification, NotificationLevel

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 8.0


@dataclass(frozen=True)
class QueuedNotification:
    notification: Notification
    received_at: float

    @property
    def id(self) -> str:
        return self.notification.id

    def as_dict(self) -> dict:
        return {**self.notification.model_dump(), "received_at": self.received_at}


class NotificationQueue:
    """Set of pending notifications keyed by id.

    Expiry runs either from ``expire_due`` (scheduler tick) or from the
    per-entry timer armed at enqueue time once the queue is bound to a loop.
    Both remove an entry once ``received_at + ttl`` has passed.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, QueuedNotification] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._listeners: list[Callable[[str, QueuedNotification], None]] = []

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._entries

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def stop(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._loop = None

    def add_listener(self, callback: Callable[[str, QueuedNotification], None]) -> Callable[[], None]:
        """Register ``callback(action, entry)``; action is ``added`` or ``removed``."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def enqueue(self, notification: Notification) -> bool:
        if notification.id in self._entries:
            return False
        entry = QueuedNotification(notification=notification, received_at=self._clock())
        self._entries[notification.id] = entry
        if self._loop is not None:
            self._timers[notification.id] = self._loop.call_later(
                self._ttl, self._expire_entry, notification.id, entry.received_at
            )
        self._emit("added", entry)
        return True

    def notify(self, title: str, message: str, level: NotificationLevel = "info") -> Notification:
        """Build a locally raised notification and enqueue it."""
        notification = Notification(id=uuid.uuid4().hex, title=title, message=message, level=level)
        self.enqueue(notification)
        return notification

    def dismiss(self, notification_id: str) -> bool:
        entry = self._entries.pop(notification_id, None)
        if entry is None:
            return False
        self._cancel_timer(notification_id)
        self._emit("removed", entry)
        return True

    def expire_due(self, now: float | None = None) -> list[str]:
        if now is None:
            now = self._clock()
        due = [
            notification_id
            for notification_id, entry in self._entries.items()
            if entry.received_at + self._ttl <= now
        ]
        for notification_id in due:
            self.dismiss(notification_id)
        return due

    def pending(self) -> list[QueuedNotification]:
        """Entries most-recent-first."""
        return sorted(self._entries.values(), key=lambda entry: entry.received_at, reverse=True)

    def get(self, notification_id: str) -> QueuedNotification | None:
        return self._entries.get(notification_id)

    def _expire_entry(self, notification_id: str, received_at: float) -> None:
        self._timers.pop(notification_id, None)
        entry = self._entries.get(notification_id)
        # A dismissed and re-delivered id carries its own timer.
        if entry is None or entry.received_at != received_at:
            return
        self.dismiss(notification_id)

    def _cancel_timer(self, notification_id: str) -> None:
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()

    def _emit(self, action: str, entry: QueuedNotification) -> None:
        for listener in list(self._listeners):
            try:
                listener(action, entry)
            except Exception:
                logger.exception("Notification listener failed")
