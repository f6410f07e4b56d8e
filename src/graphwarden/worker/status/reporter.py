"""Heartbeat publisher for worker health and progress.

Each worker owns one reporter. The worker mutates the in-memory status;
a background task writes it to Redis every interval with a TTL, so a
worker that stops heartbeating disappears from the monitor on its own.
"""

from __future__ import annotations

import asyncio
import json
import socket
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

from graphwarden.main.logging import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)

STATUS_KEY_PREFIX = "worker_status:"


def status_key(worker_type: str, worker_id: str) -> str:
    return f"{STATUS_KEY_PREFIX}{worker_type}:{worker_id}"


def generate_worker_id() -> str:
    """Process-unique id: host name plus a random suffix."""
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class WorkerStatus:
    worker_id: str
    worker_type: str
    current_task: str = "Initializing"
    progress: int = 0
    is_healthy: bool = True
    last_seen: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> WorkerStatus:
        data = json.loads(raw)
        return cls(
            worker_id=str(data["worker_id"]),
            worker_type=str(data["worker_type"]),
            current_task=str(data.get("current_task", "")),
            progress=int(data.get("progress", 0)),
            is_healthy=bool(data.get("is_healthy", False)),
            last_seen=float(data.get("last_seen", 0.0)),
        )


class StatusReporter:
    """Publishes a worker's status on a fixed interval.

    Args:
        redis_client: Async Redis connection.
        worker_type: Tag such as "friend" or "queue".
        worker_id: Generated when omitted.
        interval_seconds: Time between publishes.
        ttl_seconds: Lifetime of the published record; defaults to three intervals.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        worker_type: str,
        worker_id: str | None = None,
        interval_seconds: float = 5.0,
        ttl_seconds: int | None = None,
    ) -> None:
        self._redis = redis_client
        self._interval_seconds = interval_seconds
        self._ttl_seconds = ttl_seconds or max(1, int(interval_seconds * 3))
        self._status = WorkerStatus(
            worker_id=worker_id or generate_worker_id(),
            worker_type=worker_type,
        )
        self._task: asyncio.Task | None = None

    @property
    def worker_id(self) -> str:
        return self._status.worker_id

    @property
    def worker_type(self) -> str:
        return self._status.worker_type

    @property
    def status(self) -> WorkerStatus:
        """Snapshot of the current status."""
        return WorkerStatus(**asdict(self._status))

    def update_status(self, task: str, progress: int) -> None:
        self._status.current_task = task
        self._status.progress = max(0, min(100, progress))

    def set_healthy(self, healthy: bool) -> None:
        self._status.is_healthy = healthy

    async def start(self) -> None:
        """Publish once immediately, then keep publishing in the background."""
        if self._task is not None:
            return
        await self.publish()
        self._task = asyncio.create_task(self._run(), name=f"status-{self.worker_id}")

    async def stop(self) -> None:
        """Publish the final status and stop the background task."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.publish()

    async def publish(self) -> None:
        self._status.last_seen = time.time()
        try:
            await self._redis.set(
                status_key(self.worker_type, self.worker_id),
                self._status.to_json(),
                ex=self._ttl_seconds,
            )
        except Exception as exc:
            logger.warning(
                "Failed to publish worker status",
                extra={"worker_id": self.worker_id, "error": str(exc)},
            )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.publish()
