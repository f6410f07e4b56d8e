"""Unit tests for graph-crawl batch sources and the candidate buffer."""

from datetime import datetime, timezone

import pytest

from graphwarden.cache.friend_count import FriendCountCache
from graphwarden.cache.processing import ProcessedUserCache
from graphwarden.domain.models import ExistingRecord
from graphwarden.worker.core.loop import Batch
from graphwarden.worker.crawl.buffer import CandidateBuffer
from graphwarden.worker.crawl.friend import FriendSource
from graphwarden.worker.crawl.group import GroupSource


class TestCandidateBuffer:
    """Test buffering, leftovers and retry folding."""

    def test_take_leaves_leftover(self):
        buffer = CandidateBuffer()
        buffer.extend([1, 2, 3, 4])

        assert buffer.take(3) == [1, 2, 3]
        assert buffer.snapshot() == [4]

    def test_extend_ignores_duplicates(self):
        buffer = CandidateBuffer()

        assert buffer.extend([1, 2, 1, 3]) == 3
        assert buffer.extend([2, 4]) == 1
        assert buffer.snapshot() == [1, 2, 3, 4]

    def test_retries_go_to_head(self):
        buffer = CandidateBuffer()
        buffer.extend([10, 11])

        buffer.fold_retries([2, 4])

        assert buffer.snapshot() == [2, 4, 10, 11]
        assert buffer.retry_count(2) == 1

    def test_unbounded_retries_by_default(self):
        buffer = CandidateBuffer()
        for _ in range(50):
            buffer.take(1)
            buffer.fold_retries([7])

        assert buffer.snapshot() == [7]
        assert buffer.retry_count(7) == 50

    def test_max_retries_drops_after_limit(self):
        buffer = CandidateBuffer(max_retries=2)

        assert buffer.fold_retries([7]) == []
        buffer.take(1)
        assert buffer.fold_retries([7]) == []
        buffer.take(1)
        assert buffer.fold_retries([7]) == [7]
        assert 7 not in buffer

    def test_forget_resets_retry_count(self):
        buffer = CandidateBuffer(max_retries=1)
        buffer.fold_retries([7])
        buffer.take(1)

        buffer.forget([7])

        assert buffer.fold_retries([7]) == []


class TestFriendSource:
    """Test friend-list walking."""

    @pytest.mark.asyncio
    async def test_filters_known_processed_and_buffered(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000]
        platform.fetch_friend_ids.return_value = [1, 2, 3, 4]
        repository.check_existing.return_value = {
            1: ExistingRecord(user_id=1, status="flagged", last_updated=datetime.now(timezone.utc))
        }
        cache = ProcessedUserCache(fake_redis)
        await cache.mark_processed([2])
        source = FriendSource(repository, platform, cache, FriendCountCache(fake_redis))

        batch = await source.assemble(10)

        assert batch.ids == [3, 4]
        repository.check_existing.assert_awaited_once_with([1, 2, 3, 4])

    @pytest.mark.asyncio
    async def test_unchanged_friend_count_skips_seed(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000]
        platform.fetch_friend_ids.return_value = [1, 2, 3]
        friend_counts = FriendCountCache(fake_redis)
        await friend_counts.set_friend_count(1000, 3)
        source = FriendSource(repository, platform, ProcessedUserCache(fake_redis), friend_counts)

        assert await source.assemble(10) is None

    @pytest.mark.asyncio
    async def test_new_count_is_cached(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000]
        platform.fetch_friend_ids.return_value = [1, 2]
        friend_counts = FriendCountCache(fake_redis)
        source = FriendSource(repository, platform, ProcessedUserCache(fake_redis), friend_counts)

        await source.assemble(10)

        assert await friend_counts.get_friend_count(1000) == 2

    @pytest.mark.asyncio
    async def test_zero_friends_not_cached(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000]
        platform.fetch_friend_ids.return_value = []
        friend_counts = FriendCountCache(fake_redis)
        source = FriendSource(repository, platform, ProcessedUserCache(fake_redis), friend_counts)

        assert await source.assemble(10) is None
        assert await friend_counts.get_friend_count(1000) is None

    @pytest.mark.asyncio
    async def test_fetch_error_skips_seed(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000, 2000]
        platform.fetch_friend_ids.side_effect = [ConnectionError("rate limited"), [5, 6]]
        source = FriendSource(
            repository, platform, ProcessedUserCache(fake_redis), FriendCountCache(fake_redis)
        )

        batch = await source.assemble(10)

        assert batch.ids == [5, 6]

    @pytest.mark.asyncio
    async def test_leftover_seeds_next_batch(self, fake_redis, repository, platform):
        repository.get_candidate_batch.return_value = [1000]
        platform.fetch_friend_ids.return_value = [1, 2, 3, 4, 5]
        source = FriendSource(
            repository, platform, ProcessedUserCache(fake_redis), FriendCountCache(fake_redis)
        )

        first = await source.assemble(3)
        repository.get_candidate_batch.return_value = []
        second = await source.assemble(3)

        assert first.ids == [1, 2, 3]
        assert second.ids == [4, 5]

    @pytest.mark.asyncio
    async def test_repository_error_propagates(self, fake_redis, repository, platform):
        repository.get_candidate_batch.side_effect = ConnectionError("db down")
        source = FriendSource(
            repository, platform, ProcessedUserCache(fake_redis), FriendCountCache(fake_redis)
        )

        with pytest.raises(ConnectionError):
            await source.assemble(10)


class TestGroupSource:
    """Test cursor pagination over group rosters."""

    @pytest.mark.asyncio
    async def test_walks_pages_then_moves_to_next_group(self, fake_redis, repository, platform):
        repository.get_group_batch.side_effect = [[77, 88], []]
        pages = {
            (77, None): ([1, 2], "c1"),
            (77, "c1"): ([3], None),
            (88, None): ([4, 5], None),
        }
        platform.fetch_group_member_page.side_effect = lambda group, cursor, limit: pages[
            (group, cursor)
        ]
        source = GroupSource(repository, platform, ProcessedUserCache(fake_redis), page_size=2)

        batch = await source.assemble(3)

        assert batch.ids == [1, 2, 3]
        assert source.current_group is None

        batch = await source.assemble(3)

        assert batch.ids == [4, 5]
        platform.fetch_group_member_page.assert_any_await(77, "c1", 2)

    @pytest.mark.asyncio
    async def test_cursor_survives_between_batches(self, fake_redis, repository, platform):
        repository.get_group_batch.return_value = [77]
        platform.fetch_group_member_page.return_value = ([1, 2], "next")
        source = GroupSource(repository, platform, ProcessedUserCache(fake_redis), page_size=2)

        await source.assemble(2)

        assert source.current_group == 77
        assert source.cursor == "next"

    @pytest.mark.asyncio
    async def test_no_groups_yields_nothing(self, fake_redis, repository, platform):
        source = GroupSource(repository, platform, ProcessedUserCache(fake_redis))

        assert await source.assemble(5) is None


class TestSettle:
    """Test how a finished batch feeds back into the buffer."""

    @pytest.mark.asyncio
    async def test_retry_counts_dropped_for_ids_not_retried(
        self, fake_redis, repository, platform
    ):
        source = FriendSource(
            repository, platform, ProcessedUserCache(fake_redis), FriendCountCache(fake_redis)
        )
        source.buffer.fold_retries([1, 2, 3])
        source.buffer.take(3)

        # 1 succeeded, 2 was flagged but not persisted, 3 failed again
        await source.settle(Batch(ids=[1, 2, 3]), succeeded=[1], retry=[3])

        assert source.buffer.snapshot() == [3]
        assert source.buffer.retry_count(1) == 0
        assert source.buffer.retry_count(2) == 0
        assert source.buffer.retry_count(3) == 2
