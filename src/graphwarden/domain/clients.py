from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from graphwarden.domain.models import ClassificationOutcome, Profile


class PlatformClient(ABC):
    """Client for the external social platform API."""

    @abstractmethod
    async def fetch_friend_ids(self, user_id: int) -> list[int]:
        pass

    @abstractmethod
    async def fetch_group_member_page(
        self, group_id: int, cursor: Optional[str], limit: int
    ) -> tuple[list[int], Optional[str]]:
        """Fetch one page of a group's members.

        Returns:
            Tuple of (member_ids, next_cursor). next_cursor is None on the last page.
        """
        pass

    @abstractmethod
    async def fetch_profiles(self, user_ids: list[int]) -> list[Profile]:
        """Fetch profiles; ids the platform no longer serves are omitted."""
        pass

    @abstractmethod
    async def fetch_banned_status(self, user_ids: list[int]) -> list[int]:
        """Return the subset of ids that are banned on the platform."""
        pass

    @abstractmethod
    async def fetch_locked_groups(self, group_ids: list[int]) -> list[int]:
        """Return the subset of groups that are locked on the platform."""
        pass


class Classifier(ABC):
    @abstractmethod
    async def classify(self, profiles: list[Profile]) -> ClassificationOutcome:
        """Classify profiles.

        Raises:
            ClassificationError: If the batch could not be finished. The
                error may carry the outcome settled so far.
        """
        pass
