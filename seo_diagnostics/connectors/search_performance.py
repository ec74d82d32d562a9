"""Search-performance connector backed by Search Console ``searchAnalytics``."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..analysis.models import SearchPerformanceRecord
from ..errors import ConnectorError
from .base import ReportingConnector

logger = logging.getLogger(__name__)

SEARCH_CONSOLE_BASE_URL = "https://www.googleapis.com"
ROW_LIMIT = 25000


class SearchPerformanceConnector(ReportingConnector):
    """Fetch daily clicks/impressions/CTR/position per query and page.

    Parameters
    ----------
    site_url: str
        Search Console property (e.g., "https://example.com/" or
        "sc-domain:example.com").
    **kwargs
        Forwarded to ``ReportingConnector``.
    """

    source = "search_performance"

    def __init__(
        self, site_url: str, *, base_url: str = SEARCH_CONSOLE_BASE_URL, **kwargs: Any
    ) -> None:
        super().__init__(base_url, **kwargs)
        self._site_url = site_url

    @staticmethod
    def _parse_rows(body: Dict[str, Any], start: dt.date) -> List[SearchPerformanceRecord]:
        records: List[SearchPerformanceRecord] = []
        for row in body.get("rows") or []:
            keys: List[Optional[str]] = list(row.get("keys") or [])
            keys += [None] * (3 - len(keys))
            records.append(
                SearchPerformanceRecord(
                    date=dt.date.fromisoformat(keys[0]) if keys[0] else start,
                    query=keys[1] or None,
                    page=keys[2] or None,
                    clicks=int(row.get("clicks") or 0),
                    impressions=int(row.get("impressions") or 0),
                    ctr=float(row.get("ctr") or 0.0),
                    position=float(row.get("position") or 0.0),
                )
            )
        return records

    async def fetch_daily(
        self, start: dt.date, end: dt.date
    ) -> List[SearchPerformanceRecord]:
        """Fetch, upsert and return daily rows for ``start..end`` inclusive.

        Raises
        ------
        ConnectorError
            If no site URL is configured (no request is made).
        Exception
            The last error once the retry policy is exhausted.
        """
        if not self._site_url:
            raise ConnectorError(self.source, "Search Console site URL is required")

        logger.info(
            "search_performance.fetch",
            extra={"start": start.isoformat(), "end": end.isoformat()},
        )
        payload = {
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "dimensions": ["date", "query", "page"],
            "rowLimit": ROW_LIMIT,
        }
        path = (
            f"/webmasters/v3/sites/{quote(self._site_url, safe='')}"
            "/searchAnalytics/query"
        )

        async def _attempt() -> List[SearchPerformanceRecord]:
            body = await self._post_json(path, payload)
            records = self._parse_rows(body, start)
            await self._store.upsert(self.source, records)
            logger.info("search_performance.saved", extra={"count": len(records)})
            return records

        return await self._fetch("search_performance fetch_daily", _attempt)
