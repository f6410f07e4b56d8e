from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class Profile:
    user_id: int
    name: str = ""
    display_name: str = ""
    description: str = ""
    created: Optional[datetime] = None
    is_banned: bool = False
    friend_count: Optional[int] = None


@dataclass(slots=True)
class FlaggedResult:
    user_id: int
    reason: str
    confidence: float = 0.0


@dataclass(slots=True)
class ExistingRecord:
    """What the repository already knows about a user."""

    user_id: int
    status: str
    last_updated: Optional[datetime] = None


@dataclass(slots=True)
class ClassificationOutcome:
    failed_ids: list[int] = field(default_factory=list)
    flagged: list[FlaggedResult] = field(default_factory=list)
