"""Unit tests for worker heartbeats."""

import asyncio
import json

import pytest

from graphwarden.worker.status.monitor import StatusMonitor
from graphwarden.worker.status.reporter import StatusReporter, WorkerStatus, status_key


class TestStatusReporter:
    """Test publishing of the worker status record."""

    @pytest.mark.asyncio
    async def test_start_publishes_immediately(self, fake_redis):
        reporter = StatusReporter(fake_redis, "friend", worker_id="w1", interval_seconds=60)

        await reporter.start()
        try:
            raw = await fake_redis.get(status_key("friend", "w1"))
            assert json.loads(raw)["current_task"] == "Initializing"
            assert fake_redis.ttl_of(status_key("friend", "w1")) == 180
        finally:
            await reporter.stop()

    @pytest.mark.asyncio
    async def test_periodic_publish_picks_up_updates(self, fake_redis):
        reporter = StatusReporter(fake_redis, "queue", worker_id="w2", interval_seconds=0.01)

        await reporter.start()
        reporter.update_status("Classifying", 60)
        reporter.set_healthy(False)
        await asyncio.sleep(0.05)
        await reporter.stop()

        status = WorkerStatus.from_json(await fake_redis.get(status_key("queue", "w2")))
        assert status.current_task == "Classifying"
        assert status.progress == 60
        assert status.is_healthy is False

    @pytest.mark.asyncio
    async def test_stop_publishes_final_status(self, fake_redis):
        reporter = StatusReporter(fake_redis, "group", worker_id="w3", interval_seconds=60)
        await reporter.start()

        reporter.update_status("Shutting down", 100)
        await reporter.stop()

        status = WorkerStatus.from_json(await fake_redis.get(status_key("group", "w3")))
        assert status.current_task == "Shutting down"
        assert status.progress == 100

    def test_progress_is_clamped(self, fake_redis):
        reporter = StatusReporter(fake_redis, "friend")

        reporter.update_status("Overshoot", 150)
        assert reporter.status.progress == 100
        reporter.update_status("Undershoot", -5)
        assert reporter.status.progress == 0

    def test_worker_id_generated_once(self, fake_redis):
        reporter = StatusReporter(fake_redis, "friend")

        assert reporter.worker_id
        assert reporter.worker_id == reporter.status.worker_id
        assert StatusReporter(fake_redis, "friend").worker_id != reporter.worker_id

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self, fake_redis):
        fake_redis.fail_on.add("set")
        reporter = StatusReporter(fake_redis, "friend", worker_id="w4")

        await reporter.publish()

        assert await fake_redis.get(status_key("friend", "w4")) is None

    @pytest.mark.asyncio
    async def test_record_expires_without_heartbeats(self, fake_redis):
        reporter = StatusReporter(fake_redis, "friend", worker_id="w5", interval_seconds=5)
        await reporter.publish()

        fake_redis.advance(16)

        assert await fake_redis.get(status_key("friend", "w5")) is None


class TestStatusMonitor:
    """Test listing of live heartbeats."""

    @pytest.mark.asyncio
    async def test_lists_all_and_filters_by_type(self, fake_redis):
        for worker_type, worker_id in [("friend", "a"), ("friend", "b"), ("queue", "c")]:
            await StatusReporter(fake_redis, worker_type, worker_id=worker_id).publish()

        monitor = StatusMonitor(fake_redis)

        everything = await monitor.list_statuses()
        assert [(s.worker_type, s.worker_id) for s in everything] == [
            ("friend", "a"),
            ("friend", "b"),
            ("queue", "c"),
        ]
        friends = await monitor.list_statuses("friend")
        assert [s.worker_id for s in friends] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_malformed_record_skipped(self, fake_redis):
        await fake_redis.set("worker_status:friend:broken", "{oops")
        await StatusReporter(fake_redis, "friend", worker_id="ok").publish()

        statuses = await StatusMonitor(fake_redis).list_statuses()

        assert [s.worker_id for s in statuses] == ["ok"]
