from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from graphwarden.domain.models import ClassificationOutcome


class GraphWardenError(Exception):
    pass


class StoreUnavailableError(GraphWardenError):
    """Raised at startup when the shared store cannot be reached."""

    def __init__(self, host: str, port: int, attempts: int):
        self.host = host
        self.port = port
        self.attempts = attempts
        super().__init__(f"Could not connect to Redis at {host}:{port} after {attempts} attempts")


class PartialMarkError(GraphWardenError):
    """Raised when some ids could not be marked as processed.

    Every id is attempted before this is raised; the failed ones stay
    eligible for processing in a later cycle.
    """

    def __init__(self, failed: int, total: int):
        self.failed = failed
        self.total = total
        super().__init__(f"failed to mark {failed} out of {total} users as processed")


class ClassificationError(GraphWardenError):
    """Raised by a classifier that stopped part way through a batch.

    ``partial`` holds whatever the classifier settled before the failure.
    """

    def __init__(self, message: str, partial: Optional[ClassificationOutcome] = None):
        self.partial = partial
        super().__init__(message)


class CollaboratorConfigError(GraphWardenError):
    pass
