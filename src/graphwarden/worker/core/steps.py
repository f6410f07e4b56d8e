"""Enrich, classify and persist steps shared by the profile-based workers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from graphwarden.main.logging import get_logger
from graphwarden.worker.core.loop import Batch, ClassifierStep, Enricher, Persister

if TYPE_CHECKING:
    from graphwarden.domain.clients import Classifier, PlatformClient
    from graphwarden.domain.repositories import Repository

logger = get_logger(__name__)


class ProfileEnricher(Enricher):
    def __init__(self, platform: PlatformClient) -> None:
        self._platform = platform

    async def enrich(self, batch: Batch) -> None:
        batch.profiles = await self._platform.fetch_profiles(batch.ids)
        fetched = {profile.user_id for profile in batch.profiles}
        batch.unavailable_ids = [user_id for user_id in batch.ids if user_id not in fetched]
        if batch.unavailable_ids:
            logger.debug(
                "Profiles unavailable for some users",
                extra={"missing": len(batch.unavailable_ids)},
            )


class ProfileClassifier(ClassifierStep):
    def __init__(self, classifier: Classifier) -> None:
        self._classifier = classifier

    async def classify(self, batch: Batch) -> None:
        if not batch.profiles:
            batch.failed_ids = []
            batch.flagged = []
            return
        batch.apply_outcome(await self._classifier.classify(batch.profiles))


class FlaggedPersister(Persister):
    """Saves flagged verdicts. Saves must be idempotent upserts."""

    def __init__(self, repository: Repository, mark_processed: bool = False) -> None:
        self._repository = repository
        self._mark_processed = mark_processed

    async def persist(self, batch: Batch) -> None:
        if batch.flagged:
            await self._repository.save_flagged(batch.flagged)

        if self._mark_processed:
            handled = batch.succeeded_ids(persisted=True)
            if handled:
                await self._repository.mark_processed(handled)
