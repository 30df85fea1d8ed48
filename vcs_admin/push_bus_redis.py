"""Redis pub/sub ingress for VCS server push events.

The channel carries JSON objects ``{"topic": ..., "data": ..., "instance": ...}``.
The server (or a sidecar on its event bus) publishes without ``instance``;
console replicas tag what they relay so they can skip their own echoes. Only
topics in the console's topic set cross the bridge in either direction.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

import redis.asyncio as redis_async

from .push_hub import PushHub

logger = logging.getLogger(__name__)

INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 15.0


def parse_bus_message(message: dict) -> dict | None:
    """Decode a pub/sub message into ``{"topic", "data", ...}`` or None."""
    if message.get("type") != "message":
        return None
    data = message.get("data")
    if not isinstance(data, str):
        return None
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict) or not isinstance(event.get("topic"), str):
        return None
    return event


class RedisPushBus:
    def __init__(
        self,
        *,
        hub: PushHub,
        topics: Iterable[str],
        redis_url: str,
        channel: str,
        instance_id: str,
        connect_timeout_seconds: float = 5.0,
    ):
        self._hub = hub
        self._topics = frozenset(topics)
        self._redis_url = redis_url
        self._channel = channel
        self._instance_id = instance_id
        self._connect_timeout_seconds = connect_timeout_seconds
        self._client: Any = None
        self._listener: asyncio.Task | None = None
        self._counts = {"ingested": 0, "relayed": 0, "own": 0, "unknown_topic": 0, "malformed": 0}

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen_forever(), name="redis-push-bus")

    async def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is None:
            return
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass

    async def relay(self, topic: str, data: Any) -> None:
        """Hub distributor: share a locally ingested push with the other replicas."""
        if topic not in self._topics or self._client is None:
            return
        message = json.dumps({"topic": topic, "data": data, "instance": self._instance_id}, default=str)
        await self._client.publish(self._channel, message)
        self._counts["relayed"] += 1

    def handle_message(self, message: dict) -> bool:
        """Feed one channel message into the hub. Returns True when it was ingested."""
        event = parse_bus_message(message)
        if event is None:
            self._counts["malformed"] += 1
            return False
        if event.get("instance") == self._instance_id:
            self._counts["own"] += 1
            return False
        if event["topic"] not in self._topics:
            self._counts["unknown_topic"] += 1
            logger.debug("Ignoring push for unknown topic %s", event["topic"])
            return False
        self._hub.ingest_external_event(event)
        self._counts["ingested"] += 1
        return True

    def stats(self) -> dict:
        return {"connected": self.connected, "channel": self._channel, **self._counts}

    async def _listen_forever(self) -> None:
        backoff = INITIAL_BACKOFF_SECONDS
        while True:
            try:
                async with self._subscription() as pubsub:
                    logger.info("Redis push bus subscribed to %s", self._channel)
                    backoff = INITIAL_BACKOFF_SECONDS
                    async for message in pubsub.listen():
                        self.handle_message(message)
                logger.warning("Redis push bus subscription on %s ended", self._channel)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Redis push bus unavailable (retry in %.0fs): %s", backoff, e)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, MAX_BACKOFF_SECONDS)

    @asynccontextmanager
    async def _subscription(self) -> AsyncIterator[Any]:
        client = redis_async.from_url(
            self._redis_url,
            decode_responses=True,
            socket_connect_timeout=self._connect_timeout_seconds,
        )
        pubsub = None
        try:
            await client.ping()
            pubsub = client.pubsub(ignore_subscribe_messages=True)
            await pubsub.subscribe(self._channel)
            self._client = client
            yield pubsub
        finally:
            self._client = None
            if pubsub is not None:
                await _close_quietly(pubsub, "pubsub")
            await _close_quietly(client, "client")


async def _close_quietly(resource: Any, label: str) -> None:
    try:
        await resource.aclose()
    except Exception as e:
        logger.debug("Closing Redis %s failed: %s", label, e)
