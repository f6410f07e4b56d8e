"""Redis connection helpers shared across workers and tools."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from graphwarden.main.config import Settings, get_settings
from graphwarden.main.exceptions import StoreUnavailableError
from graphwarden.main.logging import get_logger

logger = get_logger(__name__)


def build_redis_pool_kwargs(
    settings: Settings | None = None,
    *,
    decode_responses: bool,
) -> dict[str, Any]:
    """Build keyword arguments for redis.asyncio connection pools."""
    resolved_settings = settings or get_settings()
    kwargs: dict[str, Any] = {
        "decode_responses": decode_responses,
        "socket_connect_timeout": resolved_settings.redis_conn_timeout,
        "retry_on_timeout": resolved_settings.redis_retry_on_timeout,
        "socket_keepalive": resolved_settings.redis_socket_keepalive,
        "health_check_interval": resolved_settings.redis_health_check_interval,
    }

    if resolved_settings.redis_max_connections is not None:
        kwargs["max_connections"] = resolved_settings.redis_max_connections

    if resolved_settings.redis_db is not None:
        kwargs["db"] = resolved_settings.redis_db

    return kwargs


def create_redis_client(settings: Settings | None = None) -> aioredis.Redis:
    resolved_settings = settings or get_settings()
    return aioredis.Redis(
        host=resolved_settings.redis_host,
        port=resolved_settings.redis_port,
        **build_redis_pool_kwargs(resolved_settings, decode_responses=True),
    )


async def wait_for_redis(client: aioredis.Redis, settings: Settings | None = None) -> None:
    """Ping Redis until it answers or the retry budget is spent.

    Raises:
        StoreUnavailableError: If every attempt failed.
    """
    resolved_settings = settings or get_settings()
    attempts = max(1, resolved_settings.redis_conn_retries)

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(resolved_settings.redis_conn_retry_delay),
            retry=retry_if_exception_type(
                (RedisConnectionError, RedisTimeoutError, OSError)
            ),
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying Redis connection",
                        extra={"attempt": attempt.retry_state.attempt_number},
                    )
                await client.ping()
    except RetryError as exc:
        raise StoreUnavailableError(
            resolved_settings.redis_host, resolved_settings.redis_port, attempts
        ) from exc

    logger.info(
        "Connected to Redis",
        extra={"host": resolved_settings.redis_host, "port": resolved_settings.redis_port},
    )
