"""Friend-list crawl: walks the friends of known users to discover new ones."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Optional

from graphwarden.main.logging import get_logger
from graphwarden.worker.crawl.source import GraphSource

if TYPE_CHECKING:
    from graphwarden.cache.friend_count import FriendCountCache
    from graphwarden.cache.processing import ProcessedUserCache
    from graphwarden.domain.clients import PlatformClient
    from graphwarden.domain.repositories import Repository
    from graphwarden.worker.crawl.buffer import CandidateBuffer

logger = get_logger(__name__)


class FriendSource(GraphSource):
    """Yields the friends of one seed user per unit.

    Seeds come from the repository, at most one refill per assembly. Seeds
    whose friend count did not change since the last walk are skipped.
    """

    def __init__(
        self,
        repository: Repository,
        platform: PlatformClient,
        processed_cache: ProcessedUserCache,
        friend_counts: FriendCountCache,
        buffer: Optional[CandidateBuffer] = None,
        seed_batch_size: int = 10,
    ) -> None:
        super().__init__(repository, processed_cache, buffer)
        self._platform = platform
        self._friend_counts = friend_counts
        self._seed_batch_size = seed_batch_size
        self._seeds: deque[int] = deque()
        self._refilled = False

    def begin_assembly(self) -> None:
        self._refilled = False

    async def _next_seed(self) -> Optional[int]:
        if not self._seeds:
            if self._refilled:
                return None
            self._refilled = True
            seeds = await self._repository.get_candidate_batch(self._seed_batch_size)
            if not seeds:
                logger.warning("No more users to scan")
                return None
            self._seeds.extend(seeds)
        return self._seeds.popleft()

    async def walk_next_unit(self) -> Optional[list[int]]:
        seed = await self._next_seed()
        if seed is None:
            return None

        try:
            friend_ids = await self._platform.fetch_friend_ids(seed)
        except Exception as exc:
            logger.error("Error fetching friends", extra={"user_id": seed, "error": str(exc)})
            return []

        friend_count = len(friend_ids)
        if not await self._friend_counts.has_changed(seed, friend_count):
            logger.debug(
                "Friend count unchanged, skipping",
                extra={"user_id": seed, "friend_count": friend_count},
            )
            return []

        if friend_count == 0:
            return []

        try:
            await self._friend_counts.set_friend_count(seed, friend_count)
        except Exception as exc:
            logger.warning(
                "Failed to cache friend count",
                extra={"user_id": seed, "friend_count": friend_count, "error": str(exc)},
            )

        logger.debug("Walking friends", extra={"user_id": seed, "friend_count": friend_count})
        return friend_ids
