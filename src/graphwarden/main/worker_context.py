"""Identity of the worker running in the current asyncio task.

Workers of one process share an event loop but each runs in its own task,
and every task starts from a copy of its parent's context. Binding inside
the task therefore never leaks into sibling workers.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import NamedTuple, Optional


class WorkerIdentity(NamedTuple):
    worker_id: str
    worker_type: str


_current_worker: ContextVar[Optional[WorkerIdentity]] = ContextVar(
    "current_worker", default=None
)


def bind_worker(worker_id: str, worker_type: str) -> WorkerIdentity:
    """Tag log records emitted from the current task with this worker."""
    identity = WorkerIdentity(worker_id, worker_type)
    _current_worker.set(identity)
    return identity


def get_worker_context() -> dict[str, str]:
    """Fields merged into every JSON log record; empty outside a worker."""
    identity = _current_worker.get()
    return identity._asdict() if identity is not None else {}
