"""Dedup cache of users processed within the last TTL window.

A key present means the user was handled recently and should be skipped;
a missing key means the user is eligible. This is at-most-once per window,
not exactly-once: two workers can both pass the filter before either marks.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, AsyncIterator

from graphwarden.main.exceptions import PartialMarkError
from graphwarden.main.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

PROCESSED_KEY_PREFIX = "processed_user:"
DEFAULT_PROCESSED_TTL_SECONDS = 60 * 60 * 24


class ProcessedUserCache:
    """Tracks processed users in Redis with a TTL per key.

    Args:
        redis_client: Async Redis connection.
        ttl_seconds: Lifetime of each processed marker.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl_seconds: int = DEFAULT_PROCESSED_TTL_SECONDS,
    ) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(user_id: int) -> str:
        return f"{PROCESSED_KEY_PREFIX}{user_id}"

    async def filter_unprocessed(self, user_ids: list[int]) -> list[int]:
        """Return the ids that have no processed marker.

        Store errors for an id count as "not cached", so the id is kept.
        """
        unprocessed: list[int] = []
        for user_id in user_ids:
            try:
                exists = await self._redis.exists(self._key(user_id))
            except Exception as exc:
                logger.warning(
                    "Failed to check processed marker, keeping user",
                    extra={"user_id": user_id, "error": str(exc)},
                )
                unprocessed.append(user_id)
                continue

            if not exists:
                unprocessed.append(user_id)

        return unprocessed

    async def mark_processed(self, user_ids: list[int]) -> None:
        """Set a processed marker for every id.

        Raises:
            PartialMarkError: If any id failed, after all ids were attempted.
        """
        now = int(time.time())
        failed = 0
        for user_id in user_ids:
            try:
                await self._redis.set(self._key(user_id), now, ex=self._ttl_seconds)
            except Exception as exc:
                failed += 1
                logger.debug(
                    "Failed to mark user as processed",
                    extra={"user_id": user_id, "error": str(exc)},
                )

        if failed:
            raise PartialMarkError(failed, len(user_ids))

    async def iter_ids(self) -> AsyncIterator[int]:
        """Yield the ids that currently hold a processed marker."""
        async for key in self._redis.scan_iter(match=f"{PROCESSED_KEY_PREFIX}*", count=500):
            raw_id = key.removeprefix(PROCESSED_KEY_PREFIX)
            try:
                yield int(raw_id)
            except ValueError:
                logger.warning("Ignoring malformed processed key", extra={"key": key})

    async def count_entries(self) -> int:
        count = 0
        async for _ in self.iter_ids():
            count += 1
        return count
