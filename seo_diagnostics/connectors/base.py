"""Shared plumbing for first-party reporting connectors.

A connector owns an ``httpx.AsyncClient`` and borrows everything else: the
token-bucket rate limiter (shared by every connector of a pipeline), the retry
policy, the signal store and an async access-token provider. Credential
acquisition happens outside this package.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from ..errors import ConnectorError
from ..utils.correlation import get_run_id
from ..utils.rate_limiter import TokenBucketRateLimiter
from ..utils.retry import RetryPolicy, with_retry
from .store import SignalRecord, SignalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

AccessTokenProvider = Callable[[], Awaitable[str]]


class ReportingConnector:
    """Base class for connectors that POST JSON reports to a Google API.

    Parameters
    ----------
    base_url: str
        API root (e.g., "https://analyticsdata.googleapis.com").
    store: SignalStore
        Where fetched rows are upserted and read back from.
    rate_limiter: TokenBucketRateLimiter
        Admission gate acquired once per fetch.
    token_provider: AccessTokenProvider
        Coroutine factory returning a bearer access token.
    retry_policy: Optional[RetryPolicy]
        Attempt bound and fixed delay; defaults to 3 attempts, 2000 ms.
    timeout: float
        Per-request timeout in seconds.
    """

    source: str = "reporting"

    def __init__(
        self,
        base_url: str,
        *,
        store: SignalStore,
        rate_limiter: TokenBucketRateLimiter,
        token_provider: AccessTokenProvider,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._store = store
        self._rate_limiter = rate_limiter
        self._token_provider = token_provider
        self._retry_policy = retry_policy or RetryPolicy()
        logger.info(
            "connector.init",
            extra={"source": self.source, "base_url": base_url, "timeout_seconds": timeout},
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only).

        Tests typically pass an ``httpx.AsyncClient`` built on
        ``httpx.MockTransport``.
        """
        self._client = client

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON with a bearer token and return the parsed object.

        Raises
        ------
        httpx.HTTPError
            On transport errors or non-2xx responses.
        ConnectorError
            If the body is not a JSON object.
        """
        token = await self._token_provider()
        logger.debug(
            "connector.http.post",
            extra={"run_id": get_run_id(), "source": self.source, "path": path},
        )
        resp = await self._client.post(
            path, json=payload, headers={"Authorization": f"Bearer {token}"}
        )
        resp.raise_for_status()
        try:
            body = resp.json()
        except ValueError as exc:
            raise ConnectorError(self.source, "response body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise ConnectorError(self.source, "response body is not a JSON object")
        return body

    async def _fetch(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Acquire a rate-limit token, then run ``operation`` under retry."""
        await self._rate_limiter.acquire()
        return await with_retry(operation, self._retry_policy, label)

    async def get_by_date_range(self, start: dt.date, end: dt.date) -> List[SignalRecord]:
        """Read stored rows for this source; order is not guaranteed."""
        return await self._store.get_by_date_range(self.source, start, end)

    async def aclose(self) -> None:
        await self._client.aclose()
