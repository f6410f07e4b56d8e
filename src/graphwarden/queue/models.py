from __future__ import annotations

import json
import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Scan order for batch assembly and backfill
PRIORITY_ORDER: tuple[Priority, ...] = (Priority.HIGH, Priority.NORMAL, Priority.LOW)


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    SKIPPED = "skipped"


class QueueItem(BaseModel):
    """One unit of pending work in a priority lane."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(ge=0)
    priority: Priority = Priority.NORMAL
    check_exists: bool = False
    added_at: float = Field(default_factory=time.time)
    reason: Optional[str] = None
    added_by: Optional[str] = None

    # Exact member string as read from the lane, used for removal
    _raw: Optional[str] = PrivateAttr(default=None)

    def to_member(self) -> str:
        """Serialize with sorted keys for deterministic lane members."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True)

    @classmethod
    def from_member(cls, raw: str) -> QueueItem:
        """Parse a lane member, keeping the raw string for exact removal.

        Raises:
            pydantic.ValidationError: If the member is not a valid item.
        """
        item = cls.model_validate_json(raw)
        item._raw = raw
        return item

    @property
    def member(self) -> str:
        return self._raw if self._raw is not None else self.to_member()


class QueueInfo(BaseModel):
    """Best-effort status projection of a queued user for outside observers."""

    user_id: int
    status: Optional[QueueStatus] = None
    priority: Optional[Priority] = None
    position: Optional[int] = None
