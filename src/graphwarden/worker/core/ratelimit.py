"""Per-worker cap on how many users are sent to the platform per time window."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from graphwarden.main.logging import get_logger

logger = get_logger(__name__)


@dataclass
class WindowCheck:
    """Result of checking a batch against the current window."""

    allowed: bool
    processed: int
    max_users: int
    wait_seconds: float = 0.0

    @property
    def remaining(self) -> int:
        return max(0, self.max_users - self.processed)


class WindowRateLimiter:
    """Fixed-window limit on processed users.

    The window opens at construction and resets once ``window_seconds``
    have passed. A batch larger than the whole allowance still runs when the
    window is empty, otherwise it could never run.

    Args:
        max_users: Users allowed per window.
        window_seconds: Window length.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        max_users: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_users <= 0:
            raise ValueError("max_users must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_users = max_users
        self.window_seconds = window_seconds
        self._clock = clock
        self._window_start = clock()
        self._processed = 0

    @property
    def processed(self) -> int:
        return self._processed

    def check(self, batch_size: int) -> WindowCheck:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._processed = 0

        if self._processed and self._processed + batch_size > self.max_users:
            wait = max(0.0, self._window_start + self.window_seconds - now)
            logger.debug(
                "Rate limit would be exceeded, waiting",
                extra={
                    "processed": self._processed,
                    "batch_size": batch_size,
                    "max_users": self.max_users,
                    "wait_seconds": wait,
                },
            )
            return WindowCheck(
                allowed=False,
                processed=self._processed,
                max_users=self.max_users,
                wait_seconds=wait,
            )

        return WindowCheck(allowed=True, processed=self._processed, max_users=self.max_users)

    def record(self, count: int) -> None:
        self._processed += count
