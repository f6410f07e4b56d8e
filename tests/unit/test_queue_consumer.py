"""Unit tests for the queue-consumer worker."""

import pytest
import redis.exceptions

from graphwarden.cache.processing import ProcessedUserCache
from graphwarden.domain.models import ClassificationOutcome, FlaggedResult, Profile
from graphwarden.queue.models import Priority, QueueItem, QueueStatus
from graphwarden.queue.priority_queue import PriorityQueue
from graphwarden.worker.core.loop import PollingWorker
from graphwarden.worker.core.steps import FlaggedPersister, ProfileClassifier, ProfileEnricher
from graphwarden.worker.queue_consumer import QueueSource


async def _enqueue(queue, *user_ids):
    for offset, user_id in enumerate(user_ids):
        await queue.enqueue(QueueItem(user_id=user_id, priority=Priority.HIGH, added_at=offset))


class TestQueueSource:
    """Test batch assembly and settlement against the queue."""

    @pytest.mark.asyncio
    async def test_aborted_item_removed_instead_of_processed(self, fake_redis):
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 1, 2)
        await queue.abort(1)
        source = QueueSource(queue)

        batch = await source.assemble(2)

        assert batch.ids == [2]
        assert await queue.get_queue_length(Priority.HIGH) == 1
        assert await queue.is_aborted(1) is False
        assert (await queue.get_queue_info(1)).status is None

    @pytest.mark.asyncio
    async def test_all_aborted_yields_no_batch(self, fake_redis):
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 1)
        await queue.abort(1)

        assert await QueueSource(queue).assemble(5) is None

    @pytest.mark.asyncio
    async def test_settle_completes_succeeded_and_requeues_rest(self, fake_redis):
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 1, 2, 3)
        source = QueueSource(queue)
        batch = await source.assemble(3)

        await source.settle(batch, succeeded=[1, 3], retry=[2])

        assert (await queue.get_queue_info(1)).status is QueueStatus.COMPLETE
        assert (await queue.get_queue_info(3)).status is QueueStatus.COMPLETE
        info = await queue.get_queue_info(2)
        assert info.status is QueueStatus.PENDING
        assert info.position == 1
        assert [item.user_id for item in await queue.withdraw_batch(3)] == [2]

    @pytest.mark.asyncio
    async def test_user_in_two_lanes_is_processed_once(self, fake_redis):
        queue = PriorityQueue(fake_redis)
        await queue.enqueue(QueueItem(user_id=5, priority=Priority.HIGH, added_at=1))
        await queue.enqueue(QueueItem(user_id=5, priority=Priority.NORMAL, added_at=2))
        source = QueueSource(queue)

        batch = await source.assemble(10)
        assert batch.ids == [5]
        assert batch.items[5].priority is Priority.HIGH

        await source.settle(batch, succeeded=[5], retry=[])

        assert await queue.withdraw_batch(10) == []
        assert (await queue.get_queue_info(5)).status is QueueStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_abort_check_failure_returns_items_to_pending(self, fake_redis):
        """Test withdrawn items are not left Processing when the abort lookup fails."""
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 1, 2, 3)
        fake_redis.failing_keys.add("queue_abort:2")

        with pytest.raises(redis.exceptions.ConnectionError):
            await QueueSource(queue).assemble(3)

        for user_id in (1, 2, 3):
            assert (await queue.get_queue_info(user_id)).status is QueueStatus.PENDING
        assert await queue.get_queue_length(Priority.HIGH) == 3


class TestQueueWorker:
    """Test a full queue-consumer cycle."""

    @pytest.mark.asyncio
    async def test_cycle_flags_and_settles(
        self, fake_redis, repository, platform, classifier, reporter, shutdown
    ):
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 10, 11, 12)
        platform.fetch_profiles.side_effect = lambda ids: [Profile(user_id=i) for i in ids]
        classifier.classify.return_value = ClassificationOutcome(
            failed_ids=[12], flagged=[FlaggedResult(user_id=11, reason="spam", confidence=0.9)]
        )
        cache = ProcessedUserCache(fake_redis)
        worker = PollingWorker(
            source=QueueSource(queue),
            enricher=ProfileEnricher(platform),
            classifier=ProfileClassifier(classifier),
            persister=FlaggedPersister(repository, mark_processed=True),
            reporter=reporter,
            batch_size=3,
            processed_cache=cache,
            cycle_interval=0,
        )

        await worker.run_cycle(shutdown)

        repository.save_flagged.assert_awaited_once_with(
            [FlaggedResult(user_id=11, reason="spam", confidence=0.9)]
        )
        repository.mark_processed.assert_awaited_once_with([10, 11])
        assert await queue.get_queue_length(Priority.HIGH) == 1
        assert (await queue.get_queue_info(12)).status is QueueStatus.PENDING
        assert await cache.filter_unprocessed([10, 11, 12]) == [12]

    @pytest.mark.asyncio
    async def test_user_without_profile_stays_queued(
        self, fake_redis, repository, platform, classifier, reporter, shutdown
    ):
        queue = PriorityQueue(fake_redis)
        await _enqueue(queue, 20, 21)
        platform.fetch_profiles.side_effect = lambda ids: [Profile(user_id=20)]
        cache = ProcessedUserCache(fake_redis)
        worker = PollingWorker(
            source=QueueSource(queue),
            enricher=ProfileEnricher(platform),
            classifier=ProfileClassifier(classifier),
            persister=FlaggedPersister(repository, mark_processed=True),
            reporter=reporter,
            batch_size=2,
            processed_cache=cache,
            cycle_interval=0,
        )

        await worker.run_cycle(shutdown)

        repository.mark_processed.assert_awaited_once_with([20])
        assert (await queue.get_queue_info(20)).status is QueueStatus.COMPLETE
        assert (await queue.get_queue_info(21)).status is QueueStatus.PENDING
        assert await queue.get_queue_length(Priority.HIGH) == 1
        assert await cache.filter_unprocessed([20, 21]) == [21]
