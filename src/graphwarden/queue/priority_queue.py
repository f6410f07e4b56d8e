"""Priority queue of users awaiting processing, split into weighted lanes.

Each lane is a Redis sorted set scored by enqueue time, so a lane reads in
FIFO order. Withdrawal does not pop: items stay in their lane, marked
Processing, until a consumer removes them. Uniqueness is not enforced on
insert; duplicates are resolved when a batch is assembled.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from graphwarden.main.logging import get_logger
from graphwarden.queue.models import (
    PRIORITY_ORDER,
    Priority,
    QueueInfo,
    QueueItem,
    QueueStatus,
)

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from graphwarden.domain.repositories import Repository

logger = get_logger(__name__)

DEFAULT_LANE_WEIGHTS: dict[Priority, float] = {
    Priority.HIGH: 0.6,
    Priority.NORMAL: 0.3,
    Priority.LOW: 0.1,
}

QUEUE_STATUS_PREFIX = "queue_status:"
QUEUE_PRIORITY_PREFIX = "queue_priority:"
QUEUE_POSITION_PREFIX = "queue_position:"
QUEUE_ABORT_PREFIX = "queue_abort:"


class PriorityQueue:
    """Three-lane priority queue backed by Redis sorted sets.

    Args:
        redis_client: Async Redis connection (decoded responses).
        repository: Used for the freshness check of ``check_exists`` items.
            Without one, no item is skipped as fresh.
        weights: Share of a batch each lane may fill before backfill.
        info_ttl_seconds: Lifetime of the QueueInfo side-channel keys.
        freshness_grace: Items updated in the store within this window are
            skipped when they ask for a freshness check.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        repository: Optional[Repository] = None,
        weights: Optional[dict[Priority, float]] = None,
        info_ttl_seconds: int = 3600,
        freshness_grace: timedelta = timedelta(minutes=10),
    ) -> None:
        self._redis = redis_client
        self._repository = repository
        self._weights = dict(weights or DEFAULT_LANE_WEIGHTS)
        self._info_ttl_seconds = info_ttl_seconds
        self._freshness_grace = freshness_grace

    @staticmethod
    def lane_key(priority: Priority) -> str:
        return f"queue:{priority.value}_priority"

    # ------------------------------------------------------------------
    # Lane body
    # ------------------------------------------------------------------

    async def enqueue(self, item: QueueItem) -> None:
        """Append an item to the lane matching its priority."""
        lane = self.lane_key(item.priority)
        await self._redis.zadd(lane, {item.to_member(): item.added_at})
        depth = await self._redis.zcard(lane)

        await self._publish_info(
            QueueInfo(
                user_id=item.user_id,
                status=QueueStatus.PENDING,
                priority=item.priority,
                position=depth,
            )
        )
        logger.debug(
            "Enqueued user",
            extra={"user_id": item.user_id, "priority": item.priority.value},
        )

    async def remove(self, item: QueueItem) -> None:
        """Delete an item from its lane. Removing an absent item is a no-op."""
        await self._redis.zrem(self.lane_key(item.priority), item.member)

    async def get_queue_length(self, priority: Priority) -> int:
        return await self._redis.zcard(self.lane_key(priority))

    async def get_queue_lengths(self) -> dict[Priority, int]:
        return {priority: await self.get_queue_length(priority) for priority in PRIORITY_ORDER}

    # ------------------------------------------------------------------
    # Batch assembly
    # ------------------------------------------------------------------

    def lane_quotas(self, target_size: int, depths: dict[Priority, int]) -> dict[Priority, int]:
        """Floor each lane's weighted share, capped by the lane's depth."""
        return {
            priority: min(
                math.floor(target_size * self._weights.get(priority, 0.0) + 1e-9),
                depths.get(priority, 0),
            )
            for priority in PRIORITY_ORDER
        }

    def _has_short_lane(self, target_size: int, depths: dict[Priority, int]) -> bool:
        return any(
            depths.get(priority, 0) < target_size * self._weights.get(priority, 0.0)
            for priority in PRIORITY_ORDER
        )

    async def withdraw_batch(self, target_size: int) -> list[QueueItem]:
        """Assemble a weighted, deduplicated batch of up to ``target_size`` items.

        Each lane contributes up to its quota, scanning High, Normal, then
        Low. If any lane holds less than its weighted share, the leftover
        capacity is backfilled in the same lane order. A user seen earlier in
        the scan wins; later copies of that user are removed from their lane.
        Kept items are marked Processing with their lane position but stay
        queued until removed.

        Raises:
            redis.exceptions.RedisError: Store errors propagate to the caller.
        """
        if target_size <= 0:
            return []

        depths = await self.get_queue_lengths()
        quotas = self.lane_quotas(target_size, depths)

        batch: list[QueueItem] = []
        seen: set[int] = set()
        offsets = {priority: 0 for priority in PRIORITY_ORDER}

        for priority in PRIORITY_ORDER:
            if quotas[priority] > 0:
                await self._take_from_lane(
                    priority, quotas[priority], batch, seen, offsets, fill=False
                )

        if len(batch) < target_size and self._has_short_lane(target_size, depths):
            for priority in PRIORITY_ORDER:
                remaining = target_size - len(batch)
                if remaining <= 0:
                    break
                await self._take_from_lane(priority, remaining, batch, seen, offsets, fill=True)

        if batch:
            logger.debug(
                "Withdrew queue batch",
                extra={
                    "batch_size": len(batch),
                    "target_size": target_size,
                    "quotas": {p.value: q for p, q in quotas.items()},
                },
            )
        return batch

    async def _take_from_lane(
        self,
        priority: Priority,
        limit: int,
        batch: list[QueueItem],
        seen: set[int],
        offsets: dict[Priority, int],
        *,
        fill: bool,
    ) -> None:
        """Read members of one lane starting at its offset.

        Quota mode reads at most ``limit`` members. Fill mode keeps reading
        until ``limit`` items were kept or the lane is exhausted.
        """
        lane = self.lane_key(priority)
        kept = 0
        read = 0

        while kept < limit and (fill or read < limit):
            window = limit - kept if fill else limit - read
            start = offsets[priority]
            members = await self._redis.zrange(lane, start, start + window - 1)
            if not members:
                return

            for raw in members:
                read += 1
                if not await self._admit(priority, raw, offsets[priority] + 1, batch, seen):
                    continue
                offsets[priority] += 1
                kept += 1
                if kept >= limit:
                    return

    async def _admit(
        self,
        priority: Priority,
        raw: str,
        position: int,
        batch: list[QueueItem],
        seen: set[int],
    ) -> bool:
        """Keep an item in the batch, or remove it from its lane. Returns whether it was kept."""
        lane = self.lane_key(priority)

        try:
            item = QueueItem.from_member(raw)
        except (ValidationError, ValueError) as exc:
            # Remove poison message so it is not read again
            logger.warning(
                "Removing malformed item from queue lane",
                extra={"lane": lane, "error": str(exc)},
            )
            await self._redis.zrem(lane, raw)
            return False

        if item.priority is not priority:
            # Lane is authoritative for where the member lives
            item.priority = priority

        if item.user_id in seen:
            # One lane entry per user; the copy read first owns the QueueInfo
            await self._redis.zrem(lane, raw)
            logger.debug(
                "Removed duplicate queue item",
                extra={"user_id": item.user_id, "lane": lane, "position": position},
            )
            return False

        seen.add(item.user_id)

        if item.check_exists and await self._should_skip(item):
            await self.remove(item)
            await self._publish_info(
                QueueInfo(user_id=item.user_id, status=QueueStatus.SKIPPED, priority=priority)
            )
            logger.debug("Skipping recently updated user", extra={"user_id": item.user_id})
            return False

        await self._publish_info(
            QueueInfo(
                user_id=item.user_id,
                status=QueueStatus.PROCESSING,
                priority=priority,
                position=position,
            )
        )
        batch.append(item)
        return True

    async def _should_skip(self, item: QueueItem) -> bool:
        """Whether the store already has a record updated within the grace window."""
        if self._repository is None:
            return False

        try:
            records = await self._repository.check_existing([item.user_id])
        except Exception as exc:
            logger.warning(
                "Freshness check failed, processing user anyway",
                extra={"user_id": item.user_id, "error": str(exc)},
            )
            return False

        record = records.get(item.user_id)
        if record is None or record.last_updated is None:
            return False

        last_updated = record.last_updated
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return last_updated > datetime.now(timezone.utc) - self._freshness_grace

    # ------------------------------------------------------------------
    # Settlement helpers used by consumers
    # ------------------------------------------------------------------

    async def complete(self, item: QueueItem) -> None:
        """Mark an item Complete and remove it from its lane."""
        await self.set_queue_info(
            QueueInfo(user_id=item.user_id, status=QueueStatus.COMPLETE, priority=item.priority)
        )
        await self.remove(item)

    async def return_to_pending(self, item: QueueItem) -> None:
        """Leave an item queued for a later cycle, positioned at the lane's end."""
        depth = await self.get_queue_length(item.priority)
        await self.set_queue_info(
            QueueInfo(
                user_id=item.user_id,
                status=QueueStatus.PENDING,
                priority=item.priority,
                position=depth,
            )
        )

    # ------------------------------------------------------------------
    # Abort flags
    # ------------------------------------------------------------------

    async def is_aborted(self, user_id: int) -> bool:
        return bool(await self._redis.exists(f"{QUEUE_ABORT_PREFIX}{user_id}"))

    async def abort(self, user_id: int) -> None:
        """Flag a user so consumers drop the queued item instead of processing it."""
        await self._redis.set(f"{QUEUE_ABORT_PREFIX}{user_id}", 1, ex=self._info_ttl_seconds)

    async def clear_abort(self, user_id: int) -> None:
        await self._redis.delete(f"{QUEUE_ABORT_PREFIX}{user_id}")

    # ------------------------------------------------------------------
    # QueueInfo side-channel
    # ------------------------------------------------------------------

    async def set_queue_info(self, info: QueueInfo) -> None:
        ttl = self._info_ttl_seconds
        pipe = self._redis.pipeline(transaction=False)
        if info.status is not None:
            pipe.set(f"{QUEUE_STATUS_PREFIX}{info.user_id}", info.status.value, ex=ttl)
        if info.priority is not None:
            pipe.set(f"{QUEUE_PRIORITY_PREFIX}{info.user_id}", info.priority.value, ex=ttl)
        if info.position is not None:
            pipe.set(f"{QUEUE_POSITION_PREFIX}{info.user_id}", info.position, ex=ttl)
        await pipe.execute()

    async def get_queue_info(self, user_id: int) -> QueueInfo:
        status, priority, position = await self._redis.mget(
            f"{QUEUE_STATUS_PREFIX}{user_id}",
            f"{QUEUE_PRIORITY_PREFIX}{user_id}",
            f"{QUEUE_POSITION_PREFIX}{user_id}",
        )
        return QueueInfo(
            user_id=user_id,
            status=QueueStatus(status) if status else None,
            priority=Priority(priority) if priority else None,
            position=int(position) if position is not None else None,
        )

    async def clear_queue_info(self, user_id: int) -> None:
        await self._redis.delete(
            f"{QUEUE_STATUS_PREFIX}{user_id}",
            f"{QUEUE_PRIORITY_PREFIX}{user_id}",
            f"{QUEUE_POSITION_PREFIX}{user_id}",
        )

    async def _publish_info(self, info: QueueInfo) -> None:
        """Write QueueInfo during assembly; the projection is best effort."""
        try:
            await self.set_queue_info(info)
        except Exception as exc:
            logger.warning(
                "Failed to publish queue info",
                extra={"user_id": info.user_id, "error": str(exc)},
            )
