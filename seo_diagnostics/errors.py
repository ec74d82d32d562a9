"""Exception types raised across package boundaries.

Per-worker failures are never raised; they are reported as data on
``WorkerCallResult``. Only first-party connectors raise, and only after their
retry policy is exhausted.
"""

from __future__ import annotations


class DiagnosticsError(Exception):
    """Base class for errors raised by this package."""


class ConnectorError(DiagnosticsError):
    """A first-party signal source is misconfigured or returned unusable data.

    Attributes
    ----------
    source: str
        Logical source name (e.g., "web_traffic", "search_performance").
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
