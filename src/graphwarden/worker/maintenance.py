"""Maintenance worker re-checking platform bans and locks, and purging cleared users.

The ban re-check is the worker's batch. The group and purge passes run as
housekeeping before it on every cycle, so they still run when no user is
due for a ban check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from graphwarden.domain.models import FlaggedResult
from graphwarden.main.logging import get_logger
from graphwarden.worker.core.loop import (
    Batch,
    BatchSource,
    ClassifierStep,
    Enricher,
    HousekeepingTask,
    Persister,
)

if TYPE_CHECKING:
    from graphwarden.domain.clients import PlatformClient
    from graphwarden.domain.repositories import Repository

logger = get_logger(__name__)

BANNED_REASON = "Account banned on platform"


@dataclass
class BanCheckBatch(Batch):
    currently_banned: list[int] = field(default_factory=list)
    banned: list[int] = field(default_factory=list)
    unbanned: list[int] = field(default_factory=list)


class CheckSource(BatchSource):
    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    async def assemble(self, batch_size: int) -> Optional[Batch]:
        user_ids, currently_banned = await self._repository.get_items_needing_check(batch_size)
        if not user_ids:
            return None
        return BanCheckBatch(ids=list(user_ids), currently_banned=list(currently_banned))

    async def settle(self, batch: Batch, succeeded: list[int], retry: list[int]) -> None:
        return None


class BanStatusEnricher(Enricher):
    def __init__(self, platform: PlatformClient) -> None:
        self._platform = platform

    async def enrich(self, batch: BanCheckBatch) -> None:
        batch.banned = list(await self._platform.fetch_banned_status(batch.ids))


class BanVerdictStep(ClassifierStep):
    """Splits the batch into newly reported bans and lifted bans."""

    async def classify(self, batch: BanCheckBatch) -> None:
        banned = set(batch.banned)
        batch.unbanned = [user_id for user_id in batch.currently_banned if user_id not in banned]
        batch.flagged = [
            FlaggedResult(user_id=user_id, reason=BANNED_REASON, confidence=1.0)
            for user_id in batch.banned
        ]
        batch.failed_ids = []


class BanStatusPersister(Persister):
    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    async def persist(self, batch: BanCheckBatch) -> None:
        if batch.banned:
            await self._repository.mark_ban_status(batch.banned, True)
        if batch.unbanned:
            await self._repository.mark_ban_status(batch.unbanned, False)

        if batch.banned or batch.unbanned:
            logger.info(
                "Updated ban status",
                extra={"banned": len(batch.banned), "unbanned": len(batch.unbanned)},
            )


class LockedGroupCheck(HousekeepingTask):
    """Marks groups the platform locked and unmarks groups it unlocked."""

    description = "Processing locked groups"

    def __init__(self, repository: Repository, platform: PlatformClient, batch_size: int) -> None:
        self._repository = repository
        self._platform = platform
        self._batch_size = batch_size

    async def run(self) -> None:
        group_ids, currently_locked = await self._repository.get_groups_needing_check(
            self._batch_size
        )
        if not group_ids:
            logger.debug("No groups to check for locks")
            return

        locked = list(await self._platform.fetch_locked_groups(group_ids))
        locked_set = set(locked)
        unlocked = [group_id for group_id in currently_locked if group_id not in locked_set]

        if locked:
            await self._repository.mark_lock_status(locked, True)
            logger.info("Marked locked groups", extra={"count": len(locked)})
        if unlocked:
            await self._repository.mark_lock_status(unlocked, False)
            logger.info("Unmarked locked groups", extra={"count": len(unlocked)})


class ClearedUserPurge(HousekeepingTask):
    description = "Processing cleared users"

    def __init__(self, repository: Repository, retention: timedelta) -> None:
        self._repository = repository
        self._retention = retention

    async def run(self) -> None:
        cutoff = datetime.now(timezone.utc) - self._retention
        affected = await self._repository.purge_cleared_users(cutoff)
        if affected > 0:
            logger.info(
                "Purged old cleared users",
                extra={"affected": affected, "cutoff": cutoff.isoformat()},
            )
