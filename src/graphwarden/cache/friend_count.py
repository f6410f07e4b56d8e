"""Change-detection cache for friend counts.

Used to skip re-walking a user's friend list when the count has not moved.
A heuristic for saving API calls, not a correctness guarantee.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Optional

from graphwarden.main.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

FRIEND_COUNT_KEY_PREFIX = "friend_count:"
DEFAULT_FRIEND_COUNT_TTL_SECONDS = 60 * 60 * 24 * 7


class MalformedFriendCountError(ValueError):
    pass


class FriendCountCache:
    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl_seconds: int = DEFAULT_FRIEND_COUNT_TTL_SECONDS,
    ) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(user_id: int) -> str:
        return f"{FRIEND_COUNT_KEY_PREFIX}{user_id}"

    async def get_friend_count(self, user_id: int) -> Optional[int]:
        """Return the cached count, or None when no entry exists.

        Raises:
            MalformedFriendCountError: If the stored value is not an integer.
                The entry is deleted first.
        """
        key = self._key(user_id)
        value = await self._redis.get(key)
        if value is None:
            return None

        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Dropping malformed friend count",
                extra={"user_id": user_id, "value": str(value)},
            )
            await self._redis.delete(key)
            raise MalformedFriendCountError(f"Invalid friend count for {user_id}: {value!r}") from exc

    async def set_friend_count(self, user_id: int, count: int) -> None:
        await self._redis.set(self._key(user_id), count, ex=self._ttl_seconds)

    async def has_changed(self, user_id: int, current_count: int) -> bool:
        """Whether the friend list must be walked again.

        True when nothing is cached, when the cached value differs, and on
        any store or parse error.
        """
        try:
            cached = await self.get_friend_count(user_id)
        except Exception as exc:
            logger.debug(
                "Friend count lookup failed, treating as changed",
                extra={"user_id": user_id, "error": str(exc)},
            )
            return True

        return cached is None or cached != current_count

    async def iter_ids(self) -> AsyncIterator[int]:
        async for key in self._redis.scan_iter(match=f"{FRIEND_COUNT_KEY_PREFIX}*", count=500):
            try:
                yield int(key.removeprefix(FRIEND_COUNT_KEY_PREFIX))
            except ValueError:
                logger.warning("Ignoring malformed friend count key", extra={"key": key})

    async def count_entries(self) -> int:
        count = 0
        async for _ in self.iter_ids():
            count += 1
        return count
