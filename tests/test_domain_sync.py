"""
Tests for DomainSync: pulls, push handling and mount lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from vcs_admin.domain_sync import DomainBinding, DomainSync, coerce_payload
from vcs_admin.models import DOMAIN_ADAPTERS, ServerStatus
from vcs_admin.notifications import NotificationQueue
from vcs_admin.push_hub import STATUS_CHANGED, PushHub
from vcs_admin.remote_client import RemoteError


@pytest.fixture
def hub():
    return PushHub()


@pytest.fixture
def notifications(clock):
    return NotificationQueue(clock=clock)


@pytest.fixture
def fetch():
    return AsyncMock()


@pytest.fixture
def sync(hub, notifications, fetch):
    binding = DomainBinding(name="status", topic=STATUS_CHANGED, fetch=fetch, adapter=DOMAIN_ADAPTERS["status"])
    return DomainSync(binding, hub=hub, notifications=notifications, poll_interval=3600)


class TestRefresh:
    async def test_refresh_accepts_pull(self, sync, fetch, running_status):
        fetch.return_value = running_status

        assert await sync.refresh() is True
        assert sync.cache.value == running_status

    async def test_failure_reported_once(self, sync, fetch, notifications):
        fetch.side_effect = RemoteError("GET /status failed: connection refused")

        assert await sync.refresh() is False
        assert await sync.refresh() is False

        entries = notifications.pending()
        assert len(entries) == 1
        assert entries[0].notification.level == "error"
        assert not sync.cache.has_value

    async def test_failure_reported_again_after_recovery(self, sync, fetch, notifications, running_status):
        fetch.side_effect = [RemoteError("down"), running_status, RemoteError("down again")]

        await sync.refresh()
        await sync.refresh()
        await sync.refresh()

        assert len(notifications) == 2
        assert sync.cache.value == running_status


class TestPushHandling:
    async def test_push_replaces_value(self, sync, hub, status_payload):
        await sync.mount()
        try:
            hub.publish(STATUS_CHANGED, {"data": status_payload})
            assert sync.cache.value == ServerStatus.model_validate(status_payload)
        finally:
            await sync.unmount()

    async def test_malformed_push_keeps_last_good(self, sync, hub, notifications, running_status):
        await sync.mount()
        try:
            hub.publish(STATUS_CHANGED, running_status.model_dump(by_alias=True))
            hub.publish(STATUS_CHANGED, {"http": {"IsRunning": "maybe"}})

            assert sync.cache.value == running_status
            assert sync.rejected_pushes == 1
            assert notifications.pending()[0].notification.level == "warning"
        finally:
            await sync.unmount()

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"garbage": 1},
            {"HTTPStatus": {"IsRunning": True, "Error": ""}},
            {"http": {}, "voice": {}, "control": {}},
        ],
    )
    async def test_status_push_missing_services_rejected(self, sync, hub, notifications, running_status, payload):
        await sync.mount()
        try:
            sync.cache.on_push_event(running_status)
            hub.publish(STATUS_CHANGED, payload)

            assert sync.cache.value == running_status
            assert sync.rejected_pushes == 1
            assert notifications.pending()[0].notification.level == "warning"
        finally:
            await sync.unmount()

    async def test_admin_state_push_accepted(self, sync, hub, stopped_status):
        admin_state = {
            "HTTPStatus": {"IsRunning": True, "Error": ""},
            "VoiceStatus": {"IsRunning": False, "Error": "bind: address in use"},
            "ControlStatus": {"IsRunning": False, "Error": ""},
            "StopSignals": {},
        }
        await sync.mount()
        try:
            sync.cache.on_push_event(stopped_status)
            hub.publish(STATUS_CHANGED, admin_state)

            assert sync.rejected_pushes == 0
            assert sync.cache.value.http.is_running
            assert sync.cache.value.errors == {"voice": "bind: address in use"}
        finally:
            await sync.unmount()

    async def test_push_wins_over_in_flight_pull(self, sync, hub, fetch, status_payload, stopped_status):
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return stopped_status

        fetch.side_effect = slow_fetch
        pull = asyncio.create_task(sync.refresh())
        await asyncio.sleep(0)
        sync._on_push(STATUS_CHANGED, status_payload)
        release.set()

        assert await pull is False
        assert sync.cache.value.is_running


class TestLifecycle:
    async def test_mount_pulls_and_subscribes(self, sync, hub, fetch, running_status):
        fetch.return_value = running_status

        async with sync:
            await asyncio.sleep(0.01)
            assert sync.mounted
            assert hub.subscriber_count(STATUS_CHANGED) == 1
            assert sync.cache.value == running_status

        assert not sync.mounted
        assert hub.subscriber_count(STATUS_CHANGED) == 0

    async def test_unmount_releases_on_error(self, sync, hub, fetch, stopped_status):
        fetch.return_value = stopped_status

        with pytest.raises(RuntimeError):
            async with sync:
                raise RuntimeError("view crashed")

        assert hub.subscriber_count() == 0
        assert sync._poll_task is None

    async def test_no_updates_after_unmount(self, sync, hub, fetch, status_payload, stopped_status):
        fetch.return_value = stopped_status
        async with sync:
            await asyncio.sleep(0.01)

        hub.publish(STATUS_CHANGED, status_payload)

        assert sync.cache.value == stopped_status

    async def test_poll_repeats(self, hub, notifications, fetch, stopped_status):
        fetch.return_value = stopped_status
        binding = DomainBinding(name="status", topic=STATUS_CHANGED, fetch=fetch, adapter=DOMAIN_ADAPTERS["status"])
        sync = DomainSync(binding, hub=hub, notifications=notifications, poll_interval=0.01)

        async with sync:
            await asyncio.sleep(0.05)

        assert fetch.await_count >= 2


class TestCoercePayload:
    def test_single_argument_list(self):
        adapter = DOMAIN_ADAPTERS["status"]
        status = coerce_payload(adapter, [{"http": {"IsRunning": True}}])

        assert status.http.is_running

    def test_bans_list_not_unwrapped(self, bans_payload):
        bans = coerce_payload(DOMAIN_ADAPTERS["bans"], bans_payload)

        assert bans[0].id == "c-9"
