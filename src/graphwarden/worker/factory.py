from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

from graphwarden.cache.friend_count import FriendCountCache
from graphwarden.cache.processing import ProcessedUserCache
from graphwarden.main.config import Settings, get_settings
from graphwarden.queue.models import Priority
from graphwarden.queue.priority_queue import PriorityQueue
from graphwarden.worker.core.gate import ThresholdGate
from graphwarden.worker.core.loop import PollingWorker
from graphwarden.worker.core.ratelimit import WindowRateLimiter
from graphwarden.worker.core.steps import FlaggedPersister, ProfileClassifier, ProfileEnricher
from graphwarden.worker.crawl.buffer import CandidateBuffer
from graphwarden.worker.crawl.friend import FriendSource
from graphwarden.worker.crawl.group import GroupSource
from graphwarden.worker.maintenance import (
    BanStatusEnricher,
    BanStatusPersister,
    BanVerdictStep,
    CheckSource,
    ClearedUserPurge,
    LockedGroupCheck,
)
from graphwarden.worker.queue_consumer import QueueSource
from graphwarden.worker.status.reporter import StatusReporter

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from graphwarden.domain.collaborators import Collaborators


class WorkerType(str, Enum):
    FRIEND = "friend"
    GROUP = "group"
    QUEUE = "queue"
    MAINTENANCE = "maintenance"


def build_priority_queue(
    redis_client: aioredis.Redis,
    collaborators: Optional[Collaborators] = None,
    settings: Optional[Settings] = None,
) -> PriorityQueue:
    settings = settings or get_settings()
    return PriorityQueue(
        redis_client,
        repository=collaborators.repository if collaborators else None,
        weights={
            Priority.HIGH: settings.queue_weight_high,
            Priority.NORMAL: settings.queue_weight_normal,
            Priority.LOW: settings.queue_weight_low,
        },
        info_ttl_seconds=settings.queue_info_ttl_seconds,
        freshness_grace=timedelta(minutes=settings.queue_freshness_grace_minutes),
    )


def build_worker(
    worker_type: WorkerType,
    redis_client: aioredis.Redis,
    collaborators: Collaborators,
    settings: Optional[Settings] = None,
    worker_id: Optional[str] = None,
) -> PollingWorker:
    """Wire one worker of the given type around shared clients."""
    settings = settings or get_settings()
    worker_type = WorkerType(worker_type)
    repository = collaborators.repository
    platform = collaborators.platform

    reporter = StatusReporter(
        redis_client,
        worker_type=worker_type.value,
        worker_id=worker_id,
        interval_seconds=settings.status_interval_seconds,
        ttl_seconds=settings.status_ttl_seconds,
    )
    processed_cache = ProcessedUserCache(redis_client, settings.processed_ttl_seconds)

    if worker_type is WorkerType.MAINTENANCE:
        return PollingWorker(
            source=CheckSource(repository),
            enricher=BanStatusEnricher(platform),
            classifier=BanVerdictStep(),
            persister=BanStatusPersister(repository),
            reporter=reporter,
            batch_size=settings.maintenance_batch_size,
            housekeeping=[
                LockedGroupCheck(repository, platform, settings.maintenance_group_batch_size),
                ClearedUserPurge(
                    repository, timedelta(days=settings.cleared_user_retention_days)
                ),
            ],
            cycle_interval=settings.maintenance_interval_seconds,
            error_interval=settings.error_interval_seconds,
            idle_interval=settings.maintenance_interval_seconds,
            idle_message="No users to check for bans",
        )

    enricher = ProfileEnricher(platform)
    classifier = ProfileClassifier(collaborators.classifier)

    if worker_type is WorkerType.QUEUE:
        limiter = None
        if settings.queue_max_users_per_window is not None:
            limiter = WindowRateLimiter(
                settings.queue_max_users_per_window, settings.queue_window_seconds
            )
        return PollingWorker(
            source=QueueSource(build_priority_queue(redis_client, collaborators, settings)),
            enricher=enricher,
            classifier=classifier,
            persister=FlaggedPersister(repository, mark_processed=True),
            reporter=reporter,
            batch_size=settings.queue_batch_size,
            limiter=limiter,
            processed_cache=processed_cache,
            cycle_interval=settings.cycle_interval_seconds,
            error_interval=settings.queue_error_interval_seconds,
            idle_interval=settings.queue_idle_seconds,
            idle_message="Waiting for queued users",
        )

    buffer = CandidateBuffer(max_retries=settings.max_retries)
    if worker_type is WorkerType.FRIEND:
        source = FriendSource(
            repository,
            platform,
            processed_cache,
            FriendCountCache(redis_client, settings.friend_count_ttl_seconds),
            buffer=buffer,
        )
        batch_size = settings.friend_batch_size
    else:
        source = GroupSource(
            repository,
            platform,
            processed_cache,
            buffer=buffer,
            page_size=settings.group_page_size,
        )
        batch_size = settings.group_batch_size

    return PollingWorker(
        source=source,
        enricher=enricher,
        classifier=classifier,
        persister=FlaggedPersister(repository),
        reporter=reporter,
        batch_size=batch_size,
        gate=ThresholdGate(
            repository,
            reporter,
            threshold=settings.flagged_threshold,
            pause_seconds=settings.threshold_pause_seconds,
        ),
        processed_cache=processed_cache,
        cycle_interval=settings.cycle_interval_seconds,
        error_interval=settings.error_interval_seconds,
        idle_interval=settings.crawl_idle_seconds,
        idle_message="No new users found",
    )
