"""Drive one DomainCache from remote pulls and push events.

A mounted sync holds a push subscription and a periodic poll task. Both feed
the same cache; the cache decides which update wins. Unmounting cancels the
poll task and releases the subscription.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import TypeAdapter, ValidationError

from .domain_cache import DomainCache
from .notifications import NotificationQueue
from .push_hub import PushHub, SubscriptionToken
from .remote_client import RemoteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainBinding:
    name: str
    topic: str
    fetch: Callable[[], Awaitable[Any]]
    adapter: TypeAdapter


def coerce_payload(adapter: TypeAdapter, payload: Any) -> Any:
    """Validate a push payload, accepting a single-argument list wrapper."""
    try:
        return adapter.validate_python(payload)
    except ValidationError:
        if isinstance(payload, list) and len(payload) == 1:
            return adapter.validate_python(payload[0])
        raise


class DomainSync:
    def __init__(
        self,
        binding: DomainBinding,
        *,
        hub: PushHub,
        notifications: NotificationQueue,
        poll_interval: float,
        cache: DomainCache | None = None,
    ):
        self.binding = binding
        self.cache = cache if cache is not None else DomainCache(binding.name)
        self._hub = hub
        self._notifications = notifications
        self._poll_interval = poll_interval
        self._token: SubscriptionToken | None = None
        self._poll_task: asyncio.Task | None = None
        self._failing = False
        self.rejected_pushes = 0

    @property
    def name(self) -> str:
        return self.binding.name

    @property
    def mounted(self) -> bool:
        return self._token is not None

    async def __aenter__(self) -> "DomainSync":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def mount(self) -> None:
        if self._token is not None:
            return
        self._token = self._hub.subscribe(self.binding.topic, self._on_push)
        try:
            self._poll_task = asyncio.create_task(self._poll_loop(), name=f"poll-{self.name}")
        except BaseException:
            self._hub.unsubscribe(self._token)
            self._token = None
            raise
        logger.info("Mounted %s sync (topic=%s, poll=%.1fs)", self.name, self.binding.topic, self._poll_interval)

    async def unmount(self) -> None:
        task, self._poll_task = self._poll_task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            if self._token is not None:
                self._hub.unsubscribe(self._token)
                self._token = None
                logger.info("Unmounted %s sync", self.name)

    async def refresh(self) -> bool:
        """Pull once. Returns True when the result was accepted."""
        try:
            accepted = await self.cache.pull(self.binding.fetch)
        except RemoteError as e:
            if not self._failing:
                self._failing = True
                self._notifications.notify(
                    f"Failed to load {self.name}",
                    str(e),
                    "error",
                )
            return False
        if self._failing:
            self._failing = False
            logger.info("%s pull recovered", self.name)
        return accepted

    def _on_push(self, topic: str, payload: Any) -> None:
        try:
            value = coerce_payload(self.binding.adapter, payload)
        except ValidationError as e:
            self.rejected_pushes += 1
            logger.warning("Ignoring malformed %s event: %s", topic, e)
            self._notifications.notify(
                f"Ignored malformed {self.name} update",
                f"Event {topic} did not match the expected shape; keeping the last known state.",
                "warning",
            )
            return
        self.cache.on_push_event(value)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s poll failed", self.name)
            await asyncio.sleep(self._poll_interval)
