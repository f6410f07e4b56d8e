"""Polling loop shared by every worker type.

A worker is one PollingWorker with four injected steps:

    source.assemble -> enricher.enrich -> classifier.classify -> persister.persist
                                                              -> source.settle

Gate, assembly and enrichment failures end the cycle with an error wait.
Classification and persistence failures are absorbed per batch: the ids
involved are simply not marked processed and come back in a later cycle.
Ids the enricher found nothing for were never classified, so they are not
marked processed either.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Sequence

from graphwarden.domain.models import ClassificationOutcome, FlaggedResult, Profile
from graphwarden.main.exceptions import ClassificationError, PartialMarkError
from graphwarden.main.logging import get_logger
from graphwarden.main.worker_context import bind_worker
from graphwarden.worker.core.gate import GateDecision
from graphwarden.worker.core.sleep import wait_for_shutdown

if TYPE_CHECKING:
    from graphwarden.cache.processing import ProcessedUserCache
    from graphwarden.worker.core.gate import ThresholdGate
    from graphwarden.worker.core.ratelimit import WindowRateLimiter
    from graphwarden.worker.status.reporter import StatusReporter

logger = get_logger(__name__)


@dataclass
class Batch:
    """One cycle's worth of work, filled in step by step."""

    ids: list[int]
    items: dict[int, Any] = field(default_factory=dict)
    profiles: list[Profile] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
    flagged: list[FlaggedResult] = field(default_factory=list)
    unavailable_ids: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.ids)

    @property
    def flagged_ids(self) -> list[int]:
        return [result.user_id for result in self.flagged]

    def apply_outcome(self, outcome: ClassificationOutcome) -> None:
        self.failed_ids = list(outcome.failed_ids)
        self.flagged = list(outcome.flagged)

    def fail_unsettled(self, partial: Optional[ClassificationOutcome] = None) -> None:
        """Keep what a failed classification settled; every other id failed."""
        self.flagged = list(partial.flagged) if partial else []
        settled = set(self.flagged_ids) | set(self.unavailable_ids)
        self.failed_ids = [user_id for user_id in self.ids if user_id not in settled]

    def succeeded_ids(self, persisted: bool) -> list[int]:
        excluded = set(self.failed_ids) | set(self.unavailable_ids)
        if not persisted:
            excluded.update(self.flagged_ids)
        return [user_id for user_id in self.ids if user_id not in excluded]


class BatchSource(ABC):
    @abstractmethod
    async def assemble(self, batch_size: int) -> Optional[Batch]:
        """Return the next batch, or None when there is nothing to do."""
        pass

    @abstractmethod
    async def settle(self, batch: Batch, succeeded: list[int], retry: list[int]) -> None:
        """Account for the finished batch before the next cycle."""
        pass


class Enricher(ABC):
    @abstractmethod
    async def enrich(self, batch: Batch) -> None:
        pass


class ClassifierStep(ABC):
    @abstractmethod
    async def classify(self, batch: Batch) -> None:
        """Fill ``batch.failed_ids`` and ``batch.flagged``."""
        pass


class Persister(ABC):
    @abstractmethod
    async def persist(self, batch: Batch) -> None:
        pass


class HousekeepingTask(ABC):
    """Independent chore run at the start of every cycle."""

    description: str = "Housekeeping"

    @abstractmethod
    async def run(self) -> None:
        pass


class PollingWorker:
    """Runs the batch cycle until shutdown is requested.

    Args:
        source: Produces batches and settles them afterwards.
        enricher: Fetches whatever the classifier needs.
        classifier: Splits the batch into failed and flagged ids.
        persister: Writes the verdicts.
        reporter: Heartbeat for this worker.
        batch_size: Target batch size handed to the source.
        gate: Optional backpressure gate consulted before each cycle.
        limiter: Optional cap on users processed per time window.
        housekeeping: Chores run after the gate on every cycle. A failing
            chore marks the worker unhealthy without ending the cycle.
        processed_cache: When set, succeeded ids are marked processed.
        cycle_interval: Pause after a completed cycle.
        error_interval: Pause after a failed cycle.
        idle_interval: Pause when the source had nothing.
        idle_message: Status shown while idle.
    """

    def __init__(
        self,
        *,
        source: BatchSource,
        enricher: Enricher,
        classifier: ClassifierStep,
        persister: Persister,
        reporter: StatusReporter,
        batch_size: int,
        gate: Optional[ThresholdGate] = None,
        limiter: Optional[WindowRateLimiter] = None,
        housekeeping: Sequence[HousekeepingTask] = (),
        processed_cache: Optional[ProcessedUserCache] = None,
        cycle_interval: float = 1.0,
        error_interval: float = 300.0,
        idle_interval: Optional[float] = None,
        idle_message: str = "No items to process",
    ) -> None:
        self.source = source
        self.enricher = enricher
        self.classifier = classifier
        self.persister = persister
        self.reporter = reporter
        self.batch_size = batch_size
        self.gate = gate
        self.limiter = limiter
        self.housekeeping = list(housekeeping)
        self.processed_cache = processed_cache
        self.cycle_interval = cycle_interval
        self.error_interval = error_interval
        self.idle_interval = cycle_interval if idle_interval is None else idle_interval
        self.idle_message = idle_message

    @property
    def worker_id(self) -> str:
        return self.reporter.worker_id

    @property
    def worker_type(self) -> str:
        return self.reporter.worker_type

    async def run_forever(self, shutdown: asyncio.Event) -> None:
        bind_worker(self.worker_id, self.worker_type)
        logger.info("Worker started", extra={"batch_size": self.batch_size})
        await self.reporter.start()

        try:
            while not shutdown.is_set():
                if not await self.run_cycle(shutdown):
                    break
        finally:
            self.reporter.update_status("Shutting down", 100)
            await self.reporter.stop()
            logger.info("Worker stopped")

    async def run_cycle(self, shutdown: asyncio.Event) -> bool:
        """Run one cycle including its trailing wait.

        Returns:
            False once shutdown was requested, True otherwise.
        """
        self.reporter.set_healthy(True)

        if self.gate is not None:
            decision = await self.gate.should_pause(shutdown)
            if decision is GateDecision.PAUSED:
                return not shutdown.is_set()
            if decision is GateDecision.BACKOFF:
                return await self._fail(shutdown, "Error checking flagged threshold")

        for task in self.housekeeping:
            await self._run_housekeeping(task)

        if self.limiter is not None:
            check = self.limiter.check(self.batch_size)
            if not check.allowed:
                self.reporter.update_status("Waiting for rate limit", 0)
                return await self._wait(shutdown, check.wait_seconds)

        self.reporter.update_status("Getting next batch", 20)
        try:
            batch = await self.source.assemble(self.batch_size)
        except Exception as exc:
            logger.exception("Failed to assemble batch", extra={"error": str(exc)})
            return await self._fail(shutdown, f"Error getting batch: {exc}")

        if not batch:
            self.reporter.update_status(self.idle_message, 0)
            return await self._wait(shutdown, self.idle_interval)

        if self.limiter is not None:
            self.limiter.record(len(batch))

        self.reporter.update_status(f"Fetching profiles for {len(batch)} users", 40)
        try:
            await self.enricher.enrich(batch)
        except Exception as exc:
            logger.exception(
                "Failed to enrich batch", extra={"batch_size": len(batch), "error": str(exc)}
            )
            return await self._fail(shutdown, f"Error fetching profiles: {exc}")

        self.reporter.update_status("Classifying", 60)
        try:
            await self.classifier.classify(batch)
        except Exception as exc:
            logger.error(
                "Classification failed, retrying unsettled users",
                extra={"batch_size": len(batch), "error": str(exc)},
            )
            partial = exc.partial if isinstance(exc, ClassificationError) else None
            batch.fail_unsettled(partial)

        self.reporter.update_status("Saving results", 80)
        persisted = True
        try:
            await self.persister.persist(batch)
        except Exception as exc:
            persisted = False
            logger.error(
                "Failed to persist results",
                extra={"flagged_count": len(batch.flagged), "error": str(exc)},
            )

        succeeded = batch.succeeded_ids(persisted)
        try:
            await self.source.settle(batch, succeeded, list(batch.failed_ids))
        except Exception as exc:
            self.reporter.set_healthy(False)
            logger.error("Failed to settle batch", extra={"error": str(exc)})

        if self.processed_cache is not None and succeeded:
            try:
                await self.processed_cache.mark_processed(succeeded)
            except PartialMarkError as exc:
                logger.warning(str(exc), extra={"failed": exc.failed, "total": exc.total})

        self.reporter.update_status(
            f"Completed batch: {len(succeeded)} processed, {len(batch.flagged)} flagged, "
            f"{len(batch.failed_ids)} to retry",
            100,
        )
        logger.info(
            "Batch completed",
            extra={
                "processed": len(succeeded),
                "flagged": len(batch.flagged),
                "retry": len(batch.failed_ids),
                "unavailable": len(batch.unavailable_ids),
            },
        )
        return await self._wait(shutdown, self.cycle_interval)

    async def _run_housekeeping(self, task: HousekeepingTask) -> None:
        self.reporter.update_status(task.description, 10)
        try:
            await task.run()
        except Exception as exc:
            self.reporter.set_healthy(False)
            logger.error(
                "Housekeeping task failed",
                extra={"task": task.description, "error": str(exc)},
            )

    async def _fail(self, shutdown: asyncio.Event, task: str) -> bool:
        self.reporter.set_healthy(False)
        self.reporter.update_status(task, 0)
        return await self._wait(shutdown, self.error_interval)

    async def _wait(self, shutdown: asyncio.Event, seconds: float) -> bool:
        return not await wait_for_shutdown(shutdown, seconds)
