from __future__ import annotations

import json
from typing import TYPE_CHECKING, Optional

from graphwarden.main.logging import get_logger
from graphwarden.worker.status.reporter import STATUS_KEY_PREFIX, WorkerStatus

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)


class StatusMonitor:
    """Read side of the heartbeat records written by StatusReporter."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self._redis = redis_client

    async def list_statuses(self, worker_type: Optional[str] = None) -> list[WorkerStatus]:
        """Return every live worker status, optionally for one worker type.

        Records that cannot be parsed are logged and skipped.
        """
        pattern = f"{STATUS_KEY_PREFIX}{worker_type or '*'}:*"
        statuses: list[WorkerStatus] = []

        async for key in self._redis.scan_iter(match=pattern, count=100):
            raw = await self._redis.get(key)
            if raw is None:
                # Expired between SCAN and GET
                continue
            try:
                statuses.append(WorkerStatus.from_json(raw))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping malformed worker status",
                    extra={"key": key, "error": str(exc)},
                )

        statuses.sort(key=lambda status: (status.worker_type, status.worker_id))
        return statuses
