"""Admin console runtime: all domain syncs, the alert queue and the remote facade."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from .config import DOMAINS, get_poll_interval
from .domain_sync import DomainBinding, DomainSync
from .models import DOMAIN_ADAPTERS, Notification, dump_snapshot
from .notifications import NotificationQueue, QueuedNotification
from .push_hub import (
    BANS_CHANGED,
    COALITIONS_CHANGED,
    NOTIFICATION,
    ROSTER_CHANGED,
    SETTINGS_CHANGED,
    STATUS_CHANGED,
    PushHub,
    SubscriptionToken,
)
from .remote_client import RemoteFacade

logger = logging.getLogger(__name__)

DOMAIN_TOPICS = {
    "status": STATUS_CHANGED,
    "settings": SETTINGS_CHANGED,
    "roster": ROSTER_CHANGED,
    "coalitions": COALITIONS_CHANGED,
    "bans": BANS_CHANGED,
}

PUSH_TOPICS = frozenset(DOMAIN_TOPICS.values()) | {NOTIFICATION}


class UnknownDomainError(KeyError):
    pass


class UnknownTopicError(KeyError):
    pass


def build_bindings(remote: RemoteFacade) -> dict[str, DomainBinding]:
    fetchers = {
        "status": remote.fetch_status,
        "settings": remote.fetch_settings,
        "roster": remote.fetch_roster,
        "coalitions": remote.fetch_coalitions,
        "bans": remote.fetch_bans,
    }
    return {
        name: DomainBinding(
            name=name,
            topic=DOMAIN_TOPICS[name],
            fetch=fetchers[name],
            adapter=DOMAIN_ADAPTERS[name],
        )
        for name in DOMAINS
    }


class AdminConsole:
    """Owns the synchronized view of one VCS server for the app lifetime."""

    def __init__(
        self,
        *,
        remote: RemoteFacade,
        hub: PushHub,
        notifications: NotificationQueue,
        remote_config: dict | None = None,
        notification_tick_seconds: float = 1.0,
        subscriber_queue_size: int = 200,
    ):
        self.remote = remote
        self.hub = hub
        self.notifications = notifications
        self._tick_seconds = notification_tick_seconds
        self._subscriber_queue_size = max(10, subscriber_queue_size)
        config = remote_config or {}
        self.syncs: dict[str, DomainSync] = {
            name: DomainSync(
                binding,
                hub=hub,
                notifications=notifications,
                poll_interval=get_poll_interval(config, name),
            )
            for name, binding in build_bindings(remote).items()
        }
        self._subscribers: set[asyncio.Queue[dict]] = set()
        self._dropped_events = 0
        self._notification_token: SubscriptionToken | None = None
        self._tick_task: asyncio.Task | None = None
        self.notifications.add_listener(self._on_queue_change)
        for sync in self.syncs.values():
            sync.cache.add_listener(self._on_state_change)

    async def __aenter__(self) -> "AdminConsole":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.notifications.start(loop)
        self._notification_token = self.hub.subscribe(NOTIFICATION, self._on_notification_event)
        try:
            for sync in self.syncs.values():
                await sync.mount()
            self._tick_task = asyncio.create_task(self._expiry_loop(), name="notification-expiry")
        except BaseException:
            await self.stop()
            raise
        logger.info("Admin console started with %d domains", len(self.syncs))

    async def stop(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for sync in self.syncs.values():
            await sync.unmount()
        if self._notification_token is not None:
            self.hub.unsubscribe(self._notification_token)
            self._notification_token = None
        self.notifications.stop()
        self._subscribers.clear()
        logger.info("Admin console stopped")

    def get_sync(self, domain: str) -> DomainSync:
        try:
            return self.syncs[domain]
        except KeyError:
            raise UnknownDomainError(domain) from None

    def snapshot(self, domain: str) -> Any:
        sync = self.get_sync(domain)
        return dump_snapshot(sync.cache.value) if sync.cache.has_value else None

    async def refresh(self, domain: str) -> bool:
        return await self.get_sync(domain).refresh()

    def ingest_push(self, topic: str, data: Any) -> int:
        """Publish a server push event to the mounted syncs.

        Returns the number of local handlers subscribed to the topic.
        """
        if topic not in PUSH_TOPICS:
            raise UnknownTopicError(topic)
        self.hub.publish(topic, data)
        return self.hub.subscriber_count(topic)

    def subscribe(self) -> asyncio.Queue[dict]:
        queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=self._subscriber_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict]) -> None:
        self._subscribers.discard(queue)

    def stats(self) -> dict:
        return {
            "domains": {
                name: {
                    "has_value": sync.cache.has_value,
                    "last_applied_seq": sync.cache.last_applied_seq,
                    "push_seq": sync.cache.push_seq,
                    "rejected_pushes": sync.rejected_pushes,
                    "mounted": sync.mounted,
                }
                for name, sync in self.syncs.items()
            },
            "pending_notifications": len(self.notifications),
            "subscriber_count": len(self._subscribers),
            "dropped_events": self._dropped_events,
            "push": self.hub.stats(),
        }

    def _on_notification_event(self, topic: str, payload: Any) -> None:
        try:
            notification = Notification.model_validate(payload)
        except ValidationError as e:
            logger.warning("Ignoring malformed %s event: %s", topic, e)
            return
        self.notifications.enqueue(notification)

    def _on_state_change(self, domain: str, value: Any) -> None:
        self._fan_out({"event": "state", "domain": domain, "value": dump_snapshot(value)})

    def _on_queue_change(self, action: str, entry: QueuedNotification) -> None:
        if action == "added":
            self._fan_out({"event": "notification", **entry.as_dict()})
        else:
            self._fan_out({"event": "dismissed", "id": entry.id})

    def _fan_out(self, event: dict) -> None:
        stale_subscribers: list[asyncio.Queue[dict]] = []
        for queue in self._subscribers:
            if queue.full():
                try:
                    queue.get_nowait()
                    self._dropped_events += 1
                except asyncio.QueueEmpty:
                    pass
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self._dropped_events += 1
                stale_subscribers.append(queue)
        for queue in stale_subscribers:
            self._subscribers.discard(queue)

    async def _expiry_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            expired = self.notifications.expire_due()
            if expired:
                logger.debug("Expired %d notifications", len(expired))
