"""Persistent store contract consumed by the workers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from graphwarden.domain.models import ExistingRecord, FlaggedResult


class Repository(ABC):
    """Abstract repository for users, groups and flagged verdicts.

    Writes must behave as idempotent upserts: two workers can process the
    same user between the dedup check and the processed mark.
    """

    @abstractmethod
    async def count_flagged_items(self) -> int:
        """Count flagged users still awaiting moderation review."""
        pass

    @abstractmethod
    async def get_candidate_batch(self, limit: int) -> list[int]:
        """Return seed users whose friend lists should be walked next."""
        pass

    @abstractmethod
    async def get_group_batch(self, limit: int) -> list[int]:
        """Return groups whose member rosters should be walked next."""
        pass

    @abstractmethod
    async def check_existing(self, user_ids: list[int]) -> dict[int, ExistingRecord]:
        """Return records for the ids the store already knows about.

        Unknown ids are absent from the result.
        """
        pass

    @abstractmethod
    async def mark_processed(self, user_ids: list[int]) -> None:
        """Record that the given users went through classification."""
        pass

    @abstractmethod
    async def save_flagged(self, results: list[FlaggedResult]) -> None:
        """Persist flagged verdicts."""
        pass

    @abstractmethod
    async def get_items_needing_check(self, limit: int) -> tuple[list[int], list[int]]:
        """Return users due for a ban re-check and which of them are currently banned.

        Returns:
            Tuple of (user_ids, currently_banned_ids).
        """
        pass

    @abstractmethod
    async def mark_ban_status(self, user_ids: list[int], banned: bool) -> None:
        """Set the platform ban flag for the given users."""
        pass

    @abstractmethod
    async def get_groups_needing_check(self, limit: int) -> tuple[list[int], list[int]]:
        """Return groups due for a lock re-check and which of them are currently locked.

        Returns:
            Tuple of (group_ids, currently_locked_ids).
        """
        pass

    @abstractmethod
    async def mark_lock_status(self, group_ids: list[int], locked: bool) -> None:
        """Set the platform lock flag for the given groups."""
        pass

    @abstractmethod
    async def purge_cleared_users(self, cutoff: datetime) -> int:
        """Delete users cleared by moderators before ``cutoff``.

        Returns:
            Number of users removed.
        """
        pass
