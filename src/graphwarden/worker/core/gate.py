"""Backpressure gate for graph-crawl workers.

A level-triggered valve: while the number of flagged users awaiting review
is at or above the threshold, crawl workers stop discovering new ones.
Nothing is remembered between checks except the live count.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING

from graphwarden.main.logging import get_logger
from graphwarden.worker.core.sleep import wait_for_shutdown

if TYPE_CHECKING:
    from graphwarden.domain.repositories import Repository
    from graphwarden.worker.status.reporter import StatusReporter

logger = get_logger(__name__)


class GateDecision(str, Enum):
    PROCEED = "proceed"
    PAUSED = "paused"
    BACKOFF = "backoff"


class ThresholdGate:
    def __init__(
        self,
        repository: Repository,
        reporter: StatusReporter,
        threshold: int,
        pause_seconds: float = 300,
    ) -> None:
        self._repository = repository
        self._reporter = reporter
        self._threshold = threshold
        self._pause_seconds = pause_seconds

    async def should_pause(self, shutdown: asyncio.Event) -> GateDecision:
        """Check the flagged count against the threshold.

        When paused, reports the pause and sleeps the pause interval before
        returning (the sleep ends early on shutdown). A failed read returns
        BACKOFF so the caller can apply its error wait.
        """
        try:
            flagged_count = await self._repository.count_flagged_items()
        except Exception as exc:
            logger.error("Failed to read flagged item count", extra={"error": str(exc)})
            return GateDecision.BACKOFF

        if flagged_count < self._threshold:
            return GateDecision.PROCEED

        self._reporter.update_status(
            f"Paused: {flagged_count} flagged items awaiting review "
            f"(threshold {self._threshold})",
            0,
        )
        logger.info(
            "Flagged item threshold reached, pausing",
            extra={"flagged_count": flagged_count, "threshold": self._threshold},
        )
        await wait_for_shutdown(shutdown, self._pause_seconds)
        return GateDecision.PAUSED
