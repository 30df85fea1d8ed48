"""
Tests for push event fan-out and envelope handling.
"""

import asyncio

import pytest

from vcs_admin.push_hub import ALL_TOPICS, ROSTER_CHANGED, SETTINGS_CHANGED, PushHub, as_sse, unwrap_envelope


@pytest.fixture
def hub():
    return PushHub()


class TestUnwrapEnvelope:
    def test_raw_value_passes_through(self):
        assert unwrap_envelope({"c-1": {"Name": "Viper"}}) == {"c-1": {"Name": "Viper"}}

    def test_data_envelope(self):
        assert unwrap_envelope({"data": [1, 2]}) == [1, 2]

    def test_named_event_envelope(self):
        assert unwrap_envelope({"name": "clients/changed", "data": {"c-1": {}}}) == {"c-1": {}}

    def test_argument_list_wrapper(self):
        assert unwrap_envelope({"data": [[{"id": "c-9"}]]}) == [{"id": "c-9"}]

    def test_dict_with_other_keys_untouched(self):
        payload = {"data": 1, "General": {}}
        assert unwrap_envelope(payload) is payload


class TestSubscriptions:
    def test_publish_reaches_topic_handlers(self, hub):
        seen = []
        hub.subscribe(ROSTER_CHANGED, lambda topic, data: seen.append((topic, data)))

        hub.publish(ROSTER_CHANGED, {"data": {"c-1": {}}})
        hub.publish(SETTINGS_CHANGED, {})

        assert seen == [(ROSTER_CHANGED, {"c-1": {}})]

    def test_wildcard_receives_everything(self, hub):
        seen = []
        hub.subscribe(ALL_TOPICS, lambda topic, data: seen.append(topic))

        hub.publish(ROSTER_CHANGED, {})
        hub.publish(SETTINGS_CHANGED, {})

        assert seen == [ROSTER_CHANGED, SETTINGS_CHANGED]

    def test_unsubscribe_stops_delivery(self, hub):
        seen = []
        token = hub.subscribe(ROSTER_CHANGED, lambda topic, data: seen.append(data))

        assert hub.unsubscribe(token) is True
        assert hub.unsubscribe(token) is False
        hub.publish(ROSTER_CHANGED, {})

        assert seen == []
        assert hub.subscriber_count() == 0

    def test_failing_handler_isolated(self, hub):
        def broken(topic, data):
            raise RuntimeError("boom")

        seen = []
        hub.subscribe(ROSTER_CHANGED, broken)
        hub.subscribe(ROSTER_CHANGED, lambda topic, data: seen.append(data))

        hub.publish(ROSTER_CHANGED, {"c-1": {}})

        assert seen == [{"c-1": {}}]
        assert hub.stats()["handler_failures"] == 1

    def test_ingest_external_event(self, hub):
        seen = []
        hub.subscribe(ROSTER_CHANGED, lambda topic, data: seen.append(data))

        hub.ingest_external_event({"topic": ROSTER_CHANGED, "data": {"c-2": {}}})
        hub.ingest_external_event({"data": {}})

        assert seen == [{"c-2": {}}]


class TestDistribution:
    async def test_local_publish_forwarded_to_distributor(self, hub):
        forwarded = []

        async def distributor(topic, data):
            forwarded.append((topic, data))

        hub.start(asyncio.get_running_loop())
        hub.set_distributor(distributor)
        hub.publish(ROSTER_CHANGED, {"data": {"c-1": {}}})
        hub.ingest_external_event({"topic": ROSTER_CHANGED, "data": {}})
        await asyncio.sleep(0.01)

        assert forwarded == [(ROSTER_CHANGED, {"c-1": {}})]
        hub.stop()

    async def test_distribution_tasks_tracked_until_done(self, hub):
        release = asyncio.Event()

        async def distributor(topic, data):
            await release.wait()

        hub.start(asyncio.get_running_loop())
        hub.set_distributor(distributor)
        hub.publish(ROSTER_CHANGED, {})
        await asyncio.sleep(0)

        assert hub.stats()["pending_distributions"] == 1

        release.set()
        await asyncio.sleep(0.01)

        assert hub.stats()["pending_distributions"] == 0
        hub.stop()

    async def test_stop_cancels_pending_distributions(self, hub):
        async def distributor(topic, data):
            await asyncio.sleep(3600)

        hub.start(asyncio.get_running_loop())
        hub.set_distributor(distributor)
        hub.publish(ROSTER_CHANGED, {})
        hub.publish(SETTINGS_CHANGED, {})
        tasks = set(hub._pending)

        hub.stop()
        await asyncio.sleep(0.01)

        assert len(tasks) == 2
        assert all(task.cancelled() for task in tasks)
        assert hub.stats()["pending_distributions"] == 0

    async def test_failed_distribution_counted(self, hub):
        async def distributor(topic, data):
            raise ConnectionError("redis down")

        hub.start(asyncio.get_running_loop())
        hub.set_distributor(distributor)
        hub.publish(ROSTER_CHANGED, {})
        await asyncio.sleep(0.01)

        assert hub.stats()["distributed_publish_failures"] == 1
        hub.stop()

    async def test_publish_from_other_thread(self, hub):
        seen = []
        hub.subscribe(ROSTER_CHANGED, lambda topic, data: seen.append(data))
        hub.start(asyncio.get_running_loop())

        await asyncio.to_thread(hub.publish, ROSTER_CHANGED, {"c-1": {}})
        await asyncio.sleep(0.01)

        assert seen == [{"c-1": {}}]
        hub.stop()


def test_as_sse_format():
    assert as_sse("state", {"a": 1}) == 'event: state\ndata: {"a":1}\n\n'
