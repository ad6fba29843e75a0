"""
Per-request trace ids.

The id lives in a ContextVar, so it follows a request through every await
and into the tasks it spawns. Log calls on request paths pass it as
`trace_id=current_trace_id()`.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_trace_id: ContextVar[Optional[str]] = ContextVar("sqlbot_trace_id", default=None)


def generate_trace_id() -> str:
    return str(uuid.uuid4())


def set_trace_id(trace_id: str) -> None:
    _trace_id.set(trace_id)


def current_trace_id() -> Optional[str]:
    """The active trace id, or None outside a traced context."""
    return _trace_id.get()


def get_trace_id() -> str:
    """The active trace id; one is created and installed if none is set."""
    trace_id = _trace_id.get()
    if trace_id is None:
        trace_id = generate_trace_id()
        _trace_id.set(trace_id)
    return trace_id


@contextmanager
def trace_scope(trace_id: Optional[str] = None) -> Iterator[str]:
    """
    Run a block under its own trace id, restoring the previous one on exit.

    Background jobs such as a schema sync outlive the request that started
    them and log under their own id.
    """
    scoped = trace_id or generate_trace_id()
    token = _trace_id.set(scoped)
    try:
        yield scoped
    finally:
        _trace_id.reset(token)
