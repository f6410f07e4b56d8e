from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Optional

from graphwarden.main.logging import get_logger
from graphwarden.worker.core.loop import Batch, BatchSource
from graphwarden.worker.crawl.buffer import CandidateBuffer

if TYPE_CHECKING:
    from graphwarden.cache.processing import ProcessedUserCache
    from graphwarden.domain.repositories import Repository

logger = get_logger(__name__)


class GraphSource(BatchSource):
    """Builds batches by walking the social graph one unit at a time.

    A unit is whatever ``walk_next_unit`` yields: one user's friends, or one
    page of a group's members. Candidates are filtered against the store and
    the processed cache, then buffered until a batch is full.
    """

    def __init__(
        self,
        repository: Repository,
        processed_cache: ProcessedUserCache,
        buffer: Optional[CandidateBuffer] = None,
    ) -> None:
        self._repository = repository
        self._processed_cache = processed_cache
        self.buffer = buffer if buffer is not None else CandidateBuffer()

    @abstractmethod
    async def walk_next_unit(self) -> Optional[list[int]]:
        """Return candidate ids from the next unit, or None when nothing is left."""
        pass

    def begin_assembly(self) -> None:
        """Called once before each assembly."""

    async def assemble(self, batch_size: int) -> Optional[Batch]:
        self.begin_assembly()

        while len(self.buffer) < batch_size:
            candidates = await self.walk_next_unit()
            if candidates is None:
                break
            if candidates:
                self.buffer.extend(await self.filter_candidates(candidates))

        ids = self.buffer.take(batch_size)
        if not ids:
            return None
        return Batch(ids=ids)

    async def filter_candidates(self, candidates: list[int]) -> list[int]:
        """Drop users already in the store, processed recently, or buffered."""
        existing = await self._repository.check_existing(candidates)
        unknown = [
            user_id
            for user_id in dict.fromkeys(candidates)
            if user_id not in existing and user_id not in self.buffer
        ]
        if not unknown:
            return []
        return await self._processed_cache.filter_unprocessed(unknown)

    async def settle(self, batch: Batch, succeeded: list[int], retry: list[int]) -> None:
        retrying = set(retry)
        # Counts only survive for ids that go round again
        self.buffer.forget(user_id for user_id in batch.ids if user_id not in retrying)
        self.buffer.fold_retries(retry)
