"""
Root-level conftest for all tests.

Workers get every store and collaborator injected, so unit tests run
against an in-memory Redis double and AsyncMock collaborators.
"""
import os

# Plain log lines keep pytest output readable
os.environ.setdefault("JSON_LOGS", "false")

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from graphwarden.domain.clients import Classifier, PlatformClient
from graphwarden.domain.collaborators import Collaborators
from graphwarden.domain.models import ClassificationOutcome
from graphwarden.domain.repositories import Repository
from graphwarden.main.config import Settings, reset_settings, set_settings
from graphwarden.worker.status.reporter import StatusReporter
from tests.fakes import FakeRedis


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def settings():
    """Settings with short waits so loop tests never block."""
    test_settings = Settings(
        cycle_interval_seconds=0,
        error_interval_seconds=0,
        crawl_idle_seconds=0,
        queue_idle_seconds=0,
        queue_error_interval_seconds=0,
        maintenance_interval_seconds=0,
        threshold_pause_seconds=0,
        worker_startup_delay_ms=0,
        status_interval_seconds=60,
        collaborators_factory=None,
    )
    set_settings(test_settings)
    yield test_settings
    reset_settings()


@pytest.fixture
def repository():
    repo = AsyncMock(spec=Repository)
    repo.count_flagged_items.return_value = 0
    repo.get_candidate_batch.return_value = []
    repo.get_group_batch.return_value = []
    repo.check_existing.return_value = {}
    repo.get_items_needing_check.return_value = ([], [])
    repo.get_groups_needing_check.return_value = ([], [])
    repo.purge_cleared_users.return_value = 0
    return repo


@pytest.fixture
def platform():
    client = AsyncMock(spec=PlatformClient)
    client.fetch_friend_ids.return_value = []
    client.fetch_group_member_page.return_value = ([], None)
    client.fetch_profiles.return_value = []
    client.fetch_banned_status.return_value = []
    client.fetch_locked_groups.return_value = []
    return client


@pytest.fixture
def classifier():
    mock = AsyncMock(spec=Classifier)
    mock.classify.return_value = ClassificationOutcome()
    return mock


@pytest.fixture
def collaborators(repository, platform, classifier):
    return Collaborators(repository=repository, platform=platform, classifier=classifier)


@pytest.fixture
def reporter():
    mock = MagicMock(spec=StatusReporter)
    mock.worker_id = "test-worker"
    mock.worker_type = "test"
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    return mock


@pytest.fixture
def shutdown():
    return asyncio.Event()
