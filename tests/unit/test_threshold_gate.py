"""Unit tests for the flagged-item backpressure gate."""

import asyncio

import pytest

from graphwarden.worker.core.gate import GateDecision, ThresholdGate


class TestShouldPause:
    """Test gate decisions around the threshold boundary."""

    @pytest.mark.asyncio
    async def test_proceeds_below_threshold(self, repository, reporter, shutdown):
        repository.count_flagged_items.return_value = 99
        gate = ThresholdGate(repository, reporter, threshold=100, pause_seconds=0)

        assert await gate.should_pause(shutdown) is GateDecision.PROCEED
        reporter.update_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_pauses_at_threshold(self, repository, reporter, shutdown):
        repository.count_flagged_items.return_value = 100
        gate = ThresholdGate(repository, reporter, threshold=100, pause_seconds=0)

        assert await gate.should_pause(shutdown) is GateDecision.PAUSED
        task, progress = reporter.update_status.call_args.args
        assert "100 flagged items" in task
        assert progress == 0

    @pytest.mark.asyncio
    async def test_pauses_above_threshold(self, repository, reporter, shutdown):
        repository.count_flagged_items.return_value = 101
        gate = ThresholdGate(repository, reporter, threshold=100, pause_seconds=0)

        assert await gate.should_pause(shutdown) is GateDecision.PAUSED

    @pytest.mark.asyncio
    async def test_backoff_on_read_error(self, repository, reporter, shutdown):
        """Test that an unknown count never proceeds."""
        repository.count_flagged_items.side_effect = ConnectionError("db down")
        gate = ThresholdGate(repository, reporter, threshold=100, pause_seconds=0)

        assert await gate.should_pause(shutdown) is GateDecision.BACKOFF

    @pytest.mark.asyncio
    async def test_pause_sleep_interrupted_by_shutdown(self, repository, reporter, shutdown):
        """Test the 5 minute pause ends as soon as shutdown is set."""
        repository.count_flagged_items.return_value = 500
        gate = ThresholdGate(repository, reporter, threshold=100, pause_seconds=300)

        asyncio.get_running_loop().call_later(0.01, shutdown.set)
        decision = await asyncio.wait_for(gate.should_pause(shutdown), timeout=2)

        assert decision is GateDecision.PAUSED
        assert shutdown.is_set()
