"""End-to-end diagnostic pipeline.

Ties the first-party connectors, the drop classification engine and the worker
orchestrator together for one diagnostic run:

1. ``refresh_sources`` pulls fresh daily rows into the signal store. A source
   that still fails after its retry policy is logged and skipped.
2. ``analyze`` reads the lookback window back from the store and runs the
   engine over the daily, per-page and per-query views.
3. ``run`` performs the analysis and the worker fan-out concurrently and
   returns both results for the downstream hypothesis/ticket layer.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .analysis.clusters import extract_path
from .analysis.engine import aggregate_search_by_date, derive_anomalies, run_analysis
from .analysis.models import (
    AnalysisResult,
    Anomaly,
    PageRecord,
    QueryRecord,
    SearchPerformanceRecord,
    WebTrafficRecord,
)
from .config.models import AnalysisSettings, AppConfig
from .connectors.base import AccessTokenProvider
from .connectors.search_performance import SearchPerformanceConnector
from .connectors.store import SignalStore
from .connectors.web_traffic import WebTrafficConnector
from .utils.correlation import run_id_scope
from .utils.rate_limiter import TokenBucketRateLimiter
from .utils.retry import RetryPolicy
from .workers import apply_worker_config
from .workers.config_resolver import SecretStore, WorkerConfigResolver
from .workers.models import WorkerRunResult
from .workers.orchestrator import WorkerOrchestrator

logger = logging.getLogger(__name__)


class DiagnosticRun(BaseModel):
    """Identity and timing of one diagnostic run; immutable once built."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    site_id: str
    domain: str
    started_at: dt.datetime
    finished_at: dt.datetime


class SourceRefresh(BaseModel):
    """Outcome of refreshing one first-party source."""

    model_config = ConfigDict(frozen=True)

    source: str
    ok: bool
    record_count: int = 0
    error: Optional[str] = None


class DiagnosticOutcome(BaseModel):
    """Everything one run produced.

    ``analysis`` is None when the signal store could not be read; the worker
    result is always present.
    """

    model_config = ConfigDict(frozen=True)

    run: DiagnosticRun
    analysis: Optional[AnalysisResult] = None
    analysis_error: Optional[str] = None
    workers: WorkerRunResult
    anomalies: List[Anomaly] = Field(default_factory=list)


def split_search_rows(
    rows: Sequence[SearchPerformanceRecord],
) -> Tuple[List[SearchPerformanceRecord], List[PageRecord], List[QueryRecord]]:
    """Derive daily, per-page and per-query views from raw search rows.

    Page URLs are reduced to paths so they can be clustered.
    """
    pages = [
        PageRecord(
            date=r.date,
            page_path=extract_path(r.page),
            clicks=r.clicks,
            impressions=r.impressions,
            ctr=r.ctr,
            position=r.position,
        )
        for r in rows
        if r.page
    ]
    queries = [
        QueryRecord(date=r.date, query=r.query, clicks=r.clicks, impressions=r.impressions)
        for r in rows
        if r.query
    ]
    return aggregate_search_by_date(rows), pages, queries


class DiagnosticPipeline:
    """Run analysis and worker orchestration for a site.

    Parameters
    ----------
    web_traffic: WebTrafficConnector
        Web-traffic source.
    search_performance: SearchPerformanceConnector
        Search-performance source.
    orchestrator: WorkerOrchestrator
        Worker fan-out.
    settings: Optional[AnalysisSettings]
        Windows, thresholds and lookback; defaults apply when omitted.
    """

    def __init__(
        self,
        web_traffic: WebTrafficConnector,
        search_performance: SearchPerformanceConnector,
        orchestrator: WorkerOrchestrator,
        settings: Optional[AnalysisSettings] = None,
    ) -> None:
        self._web_traffic = web_traffic
        self._search_performance = search_performance
        self._orchestrator = orchestrator
        self._settings = settings or AnalysisSettings()

    async def refresh_sources(self, start: dt.date, end: dt.date) -> Dict[str, SourceRefresh]:
        """Fetch both sources concurrently; failures are logged and skipped."""
        connectors = [self._web_traffic, self._search_performance]
        results = await asyncio.gather(
            *(c.fetch_daily(start, end) for c in connectors), return_exceptions=True
        )
        outcomes: Dict[str, SourceRefresh] = {}
        for connector, result in zip(connectors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "pipeline.source.failed",
                    extra={
                        "source": connector.source,
                        "error": str(result),
                        "attempts": getattr(result, "retry_attempts", None),
                    },
                )
                outcomes[connector.source] = SourceRefresh(
                    source=connector.source, ok=False, error=str(result)
                )
            else:
                outcomes[connector.source] = SourceRefresh(
                    source=connector.source, ok=True, record_count=len(result)
                )
        return outcomes

    async def analyze(self, end_date: dt.date) -> AnalysisResult:
        """Run the engine over the stored lookback window ending at ``end_date``."""
        start = end_date - dt.timedelta(days=self._settings.lookback_days - 1)
        traffic_rows, search_rows = await asyncio.gather(
            self._web_traffic.get_by_date_range(start, end_date),
            self._search_performance.get_by_date_range(start, end_date),
        )
        traffic: List[WebTrafficRecord] = list(traffic_rows)  # type: ignore[arg-type]
        daily, pages, queries = split_search_rows(search_rows)  # type: ignore[arg-type]
        logger.info(
            "pipeline.analyze",
            extra={
                "start": start.isoformat(),
                "end": end_date.isoformat(),
                "traffic_rows": len(traffic),
                "search_rows": len(search_rows),
            },
        )
        return run_analysis(traffic, daily, pages, queries, self._settings)

    async def run(
        self,
        run_id: str,
        site_id: str,
        domain: str,
        end_date: Optional[dt.date] = None,
    ) -> DiagnosticOutcome:
        """Analyze stored signals and fan out to workers concurrently."""
        with run_id_scope(run_id):
            return await self._run(run_id, site_id, domain, end_date)

    async def _run(
        self,
        run_id: str,
        site_id: str,
        domain: str,
        end_date: Optional[dt.date],
    ) -> DiagnosticOutcome:
        as_of = end_date or dt.datetime.now(dt.timezone.utc).date()
        started_at = dt.datetime.now(dt.timezone.utc)

        analysis_result, workers = await asyncio.gather(
            self.analyze(as_of),
            self._orchestrator.run(run_id, site_id, domain),
            return_exceptions=True,
        )
        if isinstance(workers, BaseException):
            raise workers

        analysis: Optional[AnalysisResult] = None
        analysis_error: Optional[str] = None
        anomalies: List[Anomaly] = []
        if isinstance(analysis_result, BaseException):
            if not isinstance(analysis_result, Exception):
                raise analysis_result
            analysis_error = str(analysis_result) or analysis_result.__class__.__name__
            logger.error(
                "pipeline.analysis.failed",
                extra={"run_id": run_id, "error": analysis_error},
            )
        else:
            analysis = analysis_result
            anomalies = derive_anomalies(analysis, as_of, self._settings)

        run = DiagnosticRun(
            run_id=run_id,
            site_id=site_id,
            domain=domain,
            started_at=started_at,
            finished_at=dt.datetime.now(dt.timezone.utc),
        )
        logger.info(
            "pipeline.run.complete",
            extra={
                "run_id": run_id,
                "classification": analysis.classification.value if analysis else None,
                "anomalies": len(anomalies),
                "worker_status": workers.status.value,
            },
        )
        return DiagnosticOutcome(
            run=run,
            analysis=analysis,
            analysis_error=analysis_error,
            workers=workers,
            anomalies=anomalies,
        )

    async def aclose(self) -> None:
        await asyncio.gather(
            self._web_traffic.aclose(),
            self._search_performance.aclose(),
            self._orchestrator.aclose(),
        )


def build_pipeline(
    cfg: AppConfig,
    *,
    property_id: str,
    site_url: str,
    store: SignalStore,
    token_provider: AccessTokenProvider,
    secret_store: SecretStore,
) -> DiagnosticPipeline:
    """Wire a pipeline from application config.

    Both connectors share one rate limiter and one retry policy. Worker
    overrides in ``cfg.workers`` are applied to the registry first.
    """
    apply_worker_config(cfg.workers)
    limiter = TokenBucketRateLimiter(
        cfg.rate_limit.max_tokens, cfg.rate_limit.refill_interval_seconds
    )
    policy = RetryPolicy(max_attempts=cfg.retry.max_attempts, delay_ms=cfg.retry.delay_ms)
    shared = {
        "store": store,
        "rate_limiter": limiter,
        "token_provider": token_provider,
        "retry_policy": policy,
    }
    return DiagnosticPipeline(
        WebTrafficConnector(property_id, **shared),
        SearchPerformanceConnector(site_url, **shared),
        WorkerOrchestrator(
            WorkerConfigResolver(secret_store), timeout_seconds=cfg.worker_timeout_seconds
        ),
        cfg.analysis,
    )
