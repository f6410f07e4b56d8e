from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional

from graphwarden.main.logging import get_logger

logger = get_logger(__name__)


class CandidateBuffer:
    """Ordered, duplicate-free buffer of candidate user ids.

    Leftovers from one cycle seed the next. Retries go to the head so they
    are picked up first.

    Args:
        max_retries: How many times an id may be folded back before it is
            dropped. None folds back without limit.
    """

    def __init__(self, max_retries: Optional[int] = None) -> None:
        self._ids: list[int] = []
        self._members: set[int] = set()
        self._retries: Counter[int] = Counter()
        self._max_retries = max_retries

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._members

    def snapshot(self) -> list[int]:
        return list(self._ids)

    def retry_count(self, user_id: int) -> int:
        return self._retries[user_id]

    def extend(self, user_ids: Iterable[int]) -> int:
        """Append ids not already buffered. Returns how many were added."""
        added = 0
        for user_id in user_ids:
            if user_id in self._members:
                continue
            self._ids.append(user_id)
            self._members.add(user_id)
            added += 1
        return added

    def take(self, count: int) -> list[int]:
        """Remove and return up to ``count`` ids from the head."""
        taken, self._ids = self._ids[:count], self._ids[count:]
        self._members.difference_update(taken)
        return taken

    def fold_retries(self, user_ids: Iterable[int]) -> list[int]:
        """Put failed ids back at the head, keeping their order.

        Returns:
            The ids dropped for exceeding max_retries.
        """
        requeued: list[int] = []
        dropped: list[int] = []
        for user_id in user_ids:
            if user_id in self._members or user_id in requeued:
                continue
            self._retries[user_id] += 1
            if self._max_retries is not None and self._retries[user_id] > self._max_retries:
                dropped.append(user_id)
                del self._retries[user_id]
                continue
            requeued.append(user_id)

        self._ids[:0] = requeued
        self._members.update(requeued)

        if dropped:
            logger.warning(
                "Dropping users that exceeded the retry limit",
                extra={"dropped": dropped, "max_retries": self._max_retries},
            )
        return dropped

    def forget(self, user_ids: Iterable[int]) -> None:
        """Reset retry counts for ids leaving the retry cycle."""
        for user_id in user_ids:
            self._retries.pop(user_id, None)
