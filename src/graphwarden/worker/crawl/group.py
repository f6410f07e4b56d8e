"""Group roster crawl: pages through group members to discover new users."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Optional

from graphwarden.main.logging import get_logger
from graphwarden.worker.crawl.source import GraphSource

if TYPE_CHECKING:
    from graphwarden.cache.processing import ProcessedUserCache
    from graphwarden.domain.clients import PlatformClient
    from graphwarden.domain.repositories import Repository
    from graphwarden.worker.crawl.buffer import CandidateBuffer

logger = get_logger(__name__)


class GroupSource(GraphSource):
    """Yields one page of one group's members per unit.

    The cursor survives between cycles, so a large group is walked across
    several batches. When the cursor runs out the next group is taken.
    """

    def __init__(
        self,
        repository: Repository,
        platform: PlatformClient,
        processed_cache: ProcessedUserCache,
        buffer: Optional[CandidateBuffer] = None,
        page_size: int = 100,
        seed_batch_size: int = 10,
    ) -> None:
        super().__init__(repository, processed_cache, buffer)
        self._platform = platform
        self._page_size = page_size
        self._seed_batch_size = seed_batch_size
        self._groups: deque[int] = deque()
        self._refilled = False
        self.current_group: Optional[int] = None
        self.cursor: Optional[str] = None

    def begin_assembly(self) -> None:
        self._refilled = False

    async def _next_group(self) -> Optional[int]:
        if not self._groups:
            if self._refilled:
                return None
            self._refilled = True
            groups = await self._repository.get_group_batch(self._seed_batch_size)
            if not groups:
                logger.warning("No more groups to scan")
                return None
            self._groups.extend(groups)
        return self._groups.popleft()

    async def walk_next_unit(self) -> Optional[list[int]]:
        if self.current_group is None:
            group_id = await self._next_group()
            if group_id is None:
                return None
            self.current_group, self.cursor = group_id, None

        group_id = self.current_group
        try:
            member_ids, next_cursor = await self._platform.fetch_group_member_page(
                group_id, self.cursor, self._page_size
            )
        except Exception as exc:
            logger.error(
                "Error fetching group members",
                extra={"group_id": group_id, "cursor": self.cursor, "error": str(exc)},
            )
            self.current_group, self.cursor = None, None
            return []

        if next_cursor:
            self.cursor = next_cursor
        else:
            logger.debug("Finished walking group", extra={"group_id": group_id})
            self.current_group, self.cursor = None, None

        return member_ids
