"""In-process push event hub with topic subscriptions and envelope unwrapping."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Topic names as emitted by the VCS server event bus.
STATUS_CHANGED = "admin/changed"
SETTINGS_CHANGED = "settings/changed"
ROSTER_CHANGED = "clients/changed"
COALITIONS_CHANGED = "settings/coalitions/changed"
BANS_CHANGED = "clients/banned/changed"
NOTIFICATION = "notification"
ALL_TOPICS = "*"

PushHandler = Callable[[str, Any], None]


@dataclass(frozen=True)
class SubscriptionToken:
    topic: str
    key: int


def unwrap_envelope(payload: Any) -> Any:
    """Strip the event envelopes seen from different server revisions.

    ``{"data": X}`` and ``{"name": ..., "data": X}`` yield ``X``; a list holding
    a single list (variadic event args) yields the inner list.
    """
    if isinstance(payload, dict) and "data" in payload and set(payload) <= {"name", "data", "sender"}:
        payload = payload["data"]
    if isinstance(payload, list) and len(payload) == 1 and isinstance(payload[0], list):
        payload = payload[0]
    return payload


class PushHub:
    """Fan push events out to topic handlers on the owning event loop."""

    def __init__(self) -> None:
        self._handlers: dict[str, dict[int, PushHandler]] = {}
        self._keys = itertools.count(1)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread_ident: int | None = None
        self._distributor: Callable[[str, Any], Awaitable[None]] | None = None
        self._delivered = 0
        self._handler_failures = 0
        self._distributed_publish_failures = 0
        self._pending: set[asyncio.Task] = set()

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._loop_thread_ident = threading.get_ident()

    def stop(self) -> None:
        for task in self._pending:
            task.cancel()
        self._pending.clear()
        self._handlers.clear()
        self._loop = None
        self._loop_thread_ident = None
        self._distributor = None

    def set_distributor(self, distributor: Callable[[str, Any], Awaitable[None]] | None) -> None:
        self._distributor = distributor

    def subscribe(self, topic: str, handler: PushHandler) -> SubscriptionToken:
        key = next(self._keys)
        self._handlers.setdefault(topic, {})[key] = handler
        return SubscriptionToken(topic=topic, key=key)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        handlers = self._handlers.get(token.topic)
        if not handlers or token.key not in handlers:
            return False
        del handlers[token.key]
        if not handlers:
            del self._handlers[token.topic]
        return True

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._handlers.get(topic, {}))
        return sum(len(handlers) for handlers in self._handlers.values())

    def publish(self, topic: str, payload: Any) -> None:
        """Deliver a locally produced event and forward it to the distributor."""
        self._dispatch(topic, payload, distribute=True)

    def ingest_external_event(self, raw_event: dict) -> None:
        """Deliver an event that arrived from another process."""
        topic = str(raw_event.get("topic", "")).strip()
        if not topic:
            return
        self._dispatch(topic, raw_event.get("data"), distribute=False)

    def stats(self) -> dict:
        return {
            "subscriber_count": self.subscriber_count(),
            "delivered": self._delivered,
            "handler_failures": self._handler_failures,
            "distributed_publish_failures": self._distributed_publish_failures,
            "pending_distributions": len(self._pending),
        }

    def _dispatch(self, topic: str, payload: Any, *, distribute: bool) -> None:
        loop = self._loop
        if loop is None or not loop.is_running() or threading.get_ident() == self._loop_thread_ident:
            self._publish_now(topic, payload, distribute)
            return
        loop.call_soon_threadsafe(self._publish_now, topic, payload, distribute)

    async def _run_distributor(self, topic: str, payload: Any) -> None:
        if self._distributor is None:
            return
        try:
            await self._distributor(topic, payload)
        except Exception as e:
            self._distributed_publish_failures += 1
            logger.warning("Distributing %s failed: %s", topic, e)

    def _publish_now(self, topic: str, payload: Any, distribute: bool) -> None:
        data = unwrap_envelope(payload)
        handlers = list(self._handlers.get(topic, {}).values())
        handlers.extend(self._handlers.get(ALL_TOPICS, {}).values())
        for handler in handlers:
            try:
                handler(topic, data)
                self._delivered += 1
            except Exception:
                self._handler_failures += 1
                logger.exception("Push handler for %s failed", topic)
        loop = self._loop
        if distribute and self._distributor is not None and loop is not None and loop.is_running():
            task = loop.create_task(self._run_distributor(topic, data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)


def as_sse(event_name: str, payload: dict) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"
