"""First-party signal connectors and their backing store."""

from .base import AccessTokenProvider, ReportingConnector
from .search_performance import SearchPerformanceConnector
from .store import InMemorySignalStore, SignalStore
from .web_traffic import WebTrafficConnector

__all__ = [
    "AccessTokenProvider",
    "InMemorySignalStore",
    "ReportingConnector",
    "SearchPerformanceConnector",
    "SignalStore",
    "WebTrafficConnector",
]
