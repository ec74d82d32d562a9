"""Signal persistence used by the first-party connectors.

Only an in-memory store ships here; persistent backends implement the same
``SignalStore`` protocol outside this package.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

from ..analysis.models import SearchPerformanceRecord, WebTrafficRecord

logger = logging.getLogger(__name__)

SignalRecord = Union[WebTrafficRecord, SearchPerformanceRecord]
DimensionKey = Tuple[Optional[str], Optional[str]]


def dimension_key(record: SignalRecord) -> DimensionKey:
    """Return the breakdown dimensions that, with the date, identify a row."""
    if isinstance(record, WebTrafficRecord):
        return (record.channel, record.landing_page)
    return (record.query, record.page)


class SignalStore(Protocol):
    """Storage contract for daily signal rows.

    ``upsert`` is idempotent per (source, date, dimension): a later write for
    the same key replaces the earlier row. ``get_by_date_range`` returns rows
    with ``start <= date <= end``; callers sort.
    """

    async def upsert(self, source: str, records: Sequence[SignalRecord]) -> int:
        """Insert or replace rows, returning the number written."""
        raise NotImplementedError

    async def get_by_date_range(
        self, source: str, start: dt.date, end: dt.date
    ) -> List[SignalRecord]:
        """Return stored rows for ``source`` within the inclusive date range."""
        raise NotImplementedError


class InMemorySignalStore:
    """Process-local ``SignalStore`` keyed by (source, date, dimension)."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, dt.date, DimensionKey], SignalRecord] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, source: str, records: Sequence[SignalRecord]) -> int:
        async with self._lock:
            for rec in records:
                self._rows[(source, rec.date, dimension_key(rec))] = rec
        logger.debug(
            "store.upsert", extra={"source": source, "count": len(records)}
        )
        return len(records)

    async def get_by_date_range(
        self, source: str, start: dt.date, end: dt.date
    ) -> List[SignalRecord]:
        async with self._lock:
            return [
                rec
                for (src, day, _dim), rec in self._rows.items()
                if src == source and start <= day <= end
            ]

    def __len__(self) -> int:
        return len(self._rows)
