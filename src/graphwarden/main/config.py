import logging
import os
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # Infrastructure dependencies
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: Optional[int] = None

    # Redis connection resilience
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 2
    redis_retry_on_timeout: bool = True
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30
    redis_max_connections: Optional[int] = None

    # Batch sizes per worker type
    friend_batch_size: int = 100
    group_batch_size: int = 100
    queue_batch_size: int = 50
    maintenance_batch_size: int = 200
    group_page_size: int = 100

    # Backpressure gate
    flagged_threshold: int = 1000
    threshold_pause_seconds: int = 300

    # Loop pacing
    cycle_interval_seconds: float = 1.0
    error_interval_seconds: float = 300.0
    crawl_idle_seconds: float = 60.0
    queue_idle_seconds: float = 10.0
    queue_error_interval_seconds: float = 5.0
    maintenance_interval_seconds: float = 300.0

    # Cache windows
    processed_ttl_seconds: int = 60 * 60 * 24  # 24 hours
    friend_count_ttl_seconds: int = 60 * 60 * 24 * 7  # 7 days

    # Priority queue
    queue_weight_high: float = 0.6
    queue_weight_normal: float = 0.3
    queue_weight_low: float = 0.1
    queue_info_ttl_seconds: int = 60 * 60
    queue_freshness_grace_minutes: int = 10

    # Queue worker limit on users sent to the platform per window, None disables it
    queue_max_users_per_window: Optional[int] = None
    queue_window_seconds: float = 60.0

    # Maintenance passes
    maintenance_group_batch_size: int = 200
    cleared_user_retention_days: int = 365

    # Heartbeat
    status_interval_seconds: float = 5.0

    # None keeps failed-validation ids recirculating without limit
    max_retries: Optional[int] = None

    # Delay between starting worker instances of one process
    worker_startup_delay_ms: int = 2000

    # "module:function" returning a Collaborators instance
    collaborators_factory: Optional[str] = None

    @model_validator(mode="after")
    def validate_queue_weights(self):
        weights = (self.queue_weight_high, self.queue_weight_normal, self.queue_weight_low)
        if any(weight < 0 for weight in weights):
            raise ValueError("Queue lane weights must not be negative")
        if sum(weights) > 1.0 + 1e-9:
            raise ValueError(
                f"Queue lane weights must sum to at most 1.0, got {sum(weights):.3f}"
            )
        return self

    @model_validator(mode="after")
    def validate_worker_settings(self):
        for name in (
            "friend_batch_size",
            "group_batch_size",
            "queue_batch_size",
            "maintenance_batch_size",
            "maintenance_group_batch_size",
            "group_page_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be greater than zero")

        if self.max_retries is not None and self.max_retries < 0:
            raise ValueError("MAX_RETRIES cannot be negative")

        if self.queue_max_users_per_window is not None and self.queue_max_users_per_window <= 0:
            raise ValueError("QUEUE_MAX_USERS_PER_WINDOW must be greater than zero")
        if self.queue_window_seconds <= 0:
            raise ValueError("QUEUE_WINDOW_SECONDS must be greater than zero")
        if self.cleared_user_retention_days <= 0:
            raise ValueError("CLEARED_USER_RETENTION_DAYS must be greater than zero")

        if self.status_interval_seconds <= 0:
            raise ValueError("STATUS_INTERVAL_SECONDS must be greater than zero")
        return self

    @property
    def status_ttl_seconds(self) -> int:
        return max(1, int(self.status_interval_seconds * 3))


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
