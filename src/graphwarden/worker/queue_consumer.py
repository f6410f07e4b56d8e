"""Consumer of the priority queue fed by external submissions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from graphwarden.main.logging import get_logger
from graphwarden.worker.core.loop import Batch, BatchSource

if TYPE_CHECKING:
    from graphwarden.queue.models import QueueItem
    from graphwarden.queue.priority_queue import PriorityQueue

logger = get_logger(__name__)


class QueueSource(BatchSource):
    """Withdraws weighted batches and settles items back into the queue.

    Aborted items are removed without processing. Succeeded items are
    completed and removed; every other item stays queued as Pending.
    """

    def __init__(self, queue: PriorityQueue) -> None:
        self._queue = queue

    async def assemble(self, batch_size: int) -> Optional[Batch]:
        items = await self._queue.withdraw_batch(batch_size)

        kept: dict[int, QueueItem] = {}
        unchecked = list(items)
        try:
            while unchecked:
                item = unchecked[0]
                if await self._queue.is_aborted(item.user_id):
                    await self._drop_aborted(item)
                else:
                    kept[item.user_id] = item
                unchecked.pop(0)
        except Exception:
            # Withdrawn items are marked Processing; hand them back before failing
            await self._release([*kept.values(), *unchecked])
            raise

        if not kept:
            return None
        return Batch(ids=list(kept), items=kept)

    async def _drop_aborted(self, item: QueueItem) -> None:
        await self._queue.remove(item)
        await self._queue.clear_queue_info(item.user_id)
        await self._queue.clear_abort(item.user_id)
        logger.info("Dropped aborted queue item", extra={"user_id": item.user_id})

    async def _release(self, items: list[QueueItem]) -> None:
        for item in items:
            try:
                await self._queue.return_to_pending(item)
            except Exception as exc:
                logger.warning(
                    "Failed to return queue item to pending",
                    extra={"user_id": item.user_id, "error": str(exc)},
                )

    async def settle(self, batch: Batch, succeeded: list[int], retry: list[int]) -> None:
        done = set(succeeded)
        # Complete first so pending positions reflect the shortened lanes
        for user_id, item in batch.items.items():
            if user_id in done:
                await self._queue.complete(item)
        for user_id, item in batch.items.items():
            if user_id not in done:
                await self._queue.return_to_pending(item)

        if retry:
            logger.info("Returned users to the queue for retry", extra={"count": len(retry)})
