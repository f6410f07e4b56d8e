"""Process-level runner for one or more workers of the same type."""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

from graphwarden.domain.collaborators import Collaborators, load_collaborators
from graphwarden.main.config import Settings, get_settings
from graphwarden.main.logging import get_logger
from graphwarden.redis.connection import create_redis_client, wait_for_redis
from graphwarden.worker.core.sleep import wait_for_shutdown
from graphwarden.worker.factory import WorkerType, build_worker

logger = get_logger(__name__)


def install_signal_handlers(shutdown: asyncio.Event) -> None:
    """Set ``shutdown`` on SIGINT and SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(shutdown.set))


async def run_workers(
    worker_type: WorkerType,
    count: int = 1,
    settings: Optional[Settings] = None,
    collaborators: Optional[Collaborators] = None,
    shutdown: Optional[asyncio.Event] = None,
) -> None:
    """Run ``count`` workers until shutdown.

    Startup is staggered by ``worker_startup_delay_ms`` between instances.
    Failing to reach Redis or to load collaborators is fatal.
    """
    settings = settings or get_settings()
    worker_type = WorkerType(worker_type)
    shutdown = shutdown or asyncio.Event()
    install_signal_handlers(shutdown)

    collaborators = collaborators or load_collaborators(settings)
    redis_client = create_redis_client(settings)

    try:
        await wait_for_redis(redis_client, settings)

        tasks: list[asyncio.Task] = []
        delay = settings.worker_startup_delay_ms / 1000
        for index in range(max(1, count)):
            if index > 0 and await wait_for_shutdown(shutdown, delay):
                break

            worker = build_worker(worker_type, redis_client, collaborators, settings)
            logger.info(
                "Starting worker",
                extra={
                    "worker_type": worker_type.value,
                    "worker_id": worker.worker_id,
                    "index": index + 1,
                    "count": count,
                },
            )
            tasks.append(
                asyncio.create_task(worker.run_forever(shutdown), name=f"worker-{worker.worker_id}")
            )

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error(
                    "Worker exited with error",
                    extra={"worker_type": worker_type.value, "error": str(result)},
                )
    finally:
        await redis_client.aclose()
        logger.info("All workers stopped", extra={"worker_type": worker_type.value})
