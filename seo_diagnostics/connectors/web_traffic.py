"""Web-traffic connector backed by the GA4 Data API ``runReport``."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

from ..analysis.models import WebTrafficRecord
from ..errors import ConnectorError
from .base import ReportingConnector

logger = logging.getLogger(__name__)

GA4_BASE_URL = "https://analyticsdata.googleapis.com"


def _parse_ga4_date(raw: Optional[str], fallback: dt.date) -> dt.date:
    """GA4 reports dates as ``YYYYMMDD``."""
    if not raw:
        return fallback
    return dt.datetime.strptime(raw, "%Y%m%d").date()


def _int_value(values: List[Dict[str, Any]], idx: int) -> int:
    try:
        return int(float(values[idx].get("value") or 0))
    except (IndexError, ValueError, AttributeError):
        return 0


def _str_value(values: List[Dict[str, Any]], idx: int) -> Optional[str]:
    try:
        return values[idx].get("value") or None
    except (IndexError, AttributeError):
        return None


class WebTrafficConnector(ReportingConnector):
    """Fetch daily sessions/users per channel and landing page.

    Parameters
    ----------
    property_id: str
        GA4 property identifier (digits only, without ``properties/``).
    **kwargs
        Forwarded to ``ReportingConnector``.
    """

    source = "web_traffic"

    def __init__(self, property_id: str, *, base_url: str = GA4_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self._property_id = property_id

    def _parse_rows(self, body: Dict[str, Any], start: dt.date) -> List[WebTrafficRecord]:
        records: List[WebTrafficRecord] = []
        for row in body.get("rows") or []:
            dims = row.get("dimensionValues") or []
            metrics = row.get("metricValues") or []
            records.append(
                WebTrafficRecord(
                    date=_parse_ga4_date(_str_value(dims, 0), start),
                    channel=_str_value(dims, 1),
                    landing_page=_str_value(dims, 2),
                    sessions=_int_value(metrics, 0),
                    users=_int_value(metrics, 1),
                )
            )
        return records

    async def fetch_daily(self, start: dt.date, end: dt.date) -> List[WebTrafficRecord]:
        """Fetch, upsert and return daily rows for ``start..end`` inclusive.

        Raises
        ------
        ConnectorError
            If no property id is configured (no request is made).
        Exception
            The last error once the retry policy is exhausted.
        """
        if not self._property_id:
            raise ConnectorError(self.source, "GA4 property id is required")

        logger.info(
            "web_traffic.fetch",
            extra={"start": start.isoformat(), "end": end.isoformat()},
        )
        payload = {
            "dateRanges": [{"startDate": start.isoformat(), "endDate": end.isoformat()}],
            "dimensions": [
                {"name": "date"},
                {"name": "sessionDefaultChannelGroup"},
                {"name": "landingPage"},
            ],
            "metrics": [{"name": "sessions"}, {"name": "activeUsers"}],
        }
        path = f"/v1beta/properties/{self._property_id}:runReport"

        async def _attempt() -> List[WebTrafficRecord]:
            body = await self._post_json(path, payload)
            records = self._parse_rows(body, start)
            await self._store.upsert(self.source, records)
            logger.info("web_traffic.saved", extra={"count": len(records)})
            return records

        return await self._fetch("web_traffic fetch_daily", _attempt)
