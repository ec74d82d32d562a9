"""Lightweight correlation ID utilities for structured logging.

Provides the current diagnostic run identifier via a ContextVar so that the
per-worker tasks spawned during a run include the same ``run_id`` in their log
records. The same identifier is sent to workers as ``X-Request-Id`` so that
worker-side logs can be tied back to one run.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_run_id_var: ContextVar[str] = ContextVar("run_id", default="")


def set_run_id(run_id: str) -> None:
    """Set the current run correlation id in a context variable."""

    _run_id_var.set(run_id)


def get_run_id() -> str:
    """Return the current run correlation id, or empty string."""

    return _run_id_var.get()


@contextmanager
def run_id_scope(run_id: str) -> Iterator[str]:
    """Bind ``run_id`` for the duration of the block, then restore the previous id."""

    token = _run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        _run_id_var.reset(token)
