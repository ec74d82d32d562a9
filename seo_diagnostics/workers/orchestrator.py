"""Concurrent fan-out of one diagnostic run to every registered worker.

For a run, worker configs are resolved concurrently, then one POST per valid
worker is dispatched concurrently inside an ``asyncio.TaskGroup``. Each call
carries its own timeout; the run joins on every call before aggregating.
Per-worker failures are recorded on ``WorkerCallResult`` and never raised.

There are no retries within a run: a failed worker is re-attempted by the next
scheduled run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..utils.correlation import run_id_scope
from . import WorkerSpec, all_workers
from .config_resolver import WorkerConfig, WorkerConfigResolver, api_key_fingerprint
from .extractors import extract_metrics, missing_outputs, summarize
from .models import RunStatus, WorkerCallResult, WorkerRunResult, WorkerStatus
from .suggestions import generate_insights, generate_suggestions

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
ERROR_BODY_LIMIT = 500


def _truncate(text: str, limit: int = ERROR_BODY_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class WorkerOrchestrator:
    """Dispatch a diagnostic run to every worker and aggregate the outcomes.

    Parameters
    ----------
    resolver: WorkerConfigResolver
        Resolves base URL and API key per worker, fresh for every run.
    specs: Optional[Sequence[WorkerSpec]]
        Workers to call. Defaults to the registry contents at run time.
    timeout_seconds: float
        Per-call timeout. A call still pending at the deadline is cancelled
        and reported as ``timeout``.
    """

    def __init__(
        self,
        resolver: WorkerConfigResolver,
        specs: Optional[Sequence[WorkerSpec]] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._resolver = resolver
        self._specs = list(specs) if specs is not None else None
        self._timeout_seconds = timeout_seconds
        # Deadline is enforced per call with asyncio.timeout
        self._client = httpx.AsyncClient(timeout=None)
        logger.info(
            "orchestrator.init",
            extra={
                "timeout_seconds": timeout_seconds,
                "workers": [s.key for s in self._specs] if self._specs is not None else None,
            },
        )

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only)."""
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call_worker(
        self,
        spec: WorkerSpec,
        config: WorkerConfig,
        run_id: str,
        site_id: str,
        domain: str,
    ) -> WorkerCallResult:
        """Run one worker call to a terminal ``WorkerCallResult``."""
        if not config.valid:
            logger.info(
                "orchestrator.worker.skipped",
                extra={
                    "run_id": run_id,
                    "worker_key": spec.key,
                    "missing_fields": list(config.missing_fields),
                },
            )
            return WorkerCallResult(
                worker_key=spec.key,
                status=WorkerStatus.SKIPPED,
                summary=f"Skipped: {config.error}",
                error_code="NO_CONFIG",
                error_detail=config.error,
            )

        url = f"{config.base_url}{spec.run_path}"
        headers = {
            "Content-Type": "application/json",
            "X-Request-Id": run_id,
            "x-api-key": config.api_key or "",
            "Authorization": f"Bearer {config.api_key}",
        }
        body = {"site_id": site_id, "run_id": run_id, "domain": domain}
        logger.info(
            "orchestrator.worker.call",
            extra={
                "run_id": run_id,
                "worker_key": spec.key,
                "url": url,
                "api_key_fingerprint": api_key_fingerprint(config.api_key),
            },
        )

        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout_seconds):
                resp = await self._client.post(url, json=body, headers=headers)
        except (TimeoutError, httpx.TimeoutException):
            duration_ms = _elapsed_ms(started)
            limit_ms = int(self._timeout_seconds * 1000)
            logger.warning(
                "orchestrator.worker.timeout",
                extra={"run_id": run_id, "worker_key": spec.key, "duration_ms": duration_ms},
            )
            return WorkerCallResult(
                worker_key=spec.key,
                status=WorkerStatus.TIMEOUT,
                duration_ms=duration_ms,
                summary=f"Timeout after {limit_ms}ms",
                error_code="TIMEOUT",
                error_detail=f"Request timed out after {limit_ms}ms",
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            duration_ms = _elapsed_ms(started)
            detail = str(exc) or exc.__class__.__name__
            logger.warning(
                "orchestrator.worker.network_error",
                extra={"run_id": run_id, "worker_key": spec.key, "error": detail},
            )
            return WorkerCallResult(
                worker_key=spec.key,
                status=WorkerStatus.FAILED,
                duration_ms=duration_ms,
                summary=f"Error: {detail}",
                error_code="NETWORK_ERROR",
                error_detail=detail,
            )
        except Exception as exc:
            # Request construction errors (e.g. non-ASCII header values) fail only this worker
            duration_ms = _elapsed_ms(started)
            detail = str(exc) or exc.__class__.__name__
            logger.warning(
                "orchestrator.worker.call_error",
                extra={
                    "run_id": run_id,
                    "worker_key": spec.key,
                    "error_type": exc.__class__.__name__,
                    "error": detail,
                },
            )
            return WorkerCallResult(
                worker_key=spec.key,
                status=WorkerStatus.FAILED,
                duration_ms=duration_ms,
                summary=f"Error: {detail}",
                error_code="NETWORK_ERROR",
                error_detail=detail,
            )

        duration_ms = _elapsed_ms(started)
        if not resp.is_success:
            text = resp.text or ""
            logger.warning(
                "orchestrator.worker.http_error",
                extra={
                    "run_id": run_id,
                    "worker_key": spec.key,
                    "status_code": resp.status_code,
                    "duration_ms": duration_ms,
                },
            )
            return WorkerCallResult(
                worker_key=spec.key,
                status=WorkerStatus.FAILED,
                duration_ms=duration_ms,
                summary=f"HTTP {resp.status_code}: {text[:200]}",
                error_code=f"HTTP_{resp.status_code}",
                error_detail=_truncate(text) or None,
            )

        try:
            payload: Any = resp.json()
        except (ValueError, RecursionError) as exc:
            logger.warning(
                "orchestrator.worker.malformed_response",
                extra={
                    "run_id": run_id,
                    "worker_key": spec.key,
                    "error_type": exc.__class__.__name__,
                },
            )
            payload = None

        metrics = extract_metrics(spec.key, payload)
        required = config.required_outputs or spec.required_outputs
        missing = missing_outputs(required, payload)
        if missing:
            logger.info(
                "orchestrator.worker.missing_outputs",
                extra={"run_id": run_id, "worker_key": spec.key, "missing": missing},
            )
        logger.info(
            "orchestrator.worker.success",
            extra={
                "run_id": run_id,
                "worker_key": spec.key,
                "duration_ms": duration_ms,
                "metric_keys": sorted(metrics.keys()),
            },
        )
        return WorkerCallResult(
            worker_key=spec.key,
            status=WorkerStatus.SUCCESS,
            duration_ms=duration_ms,
            normalized_metrics=metrics,
            summary=summarize(spec.key, payload, metrics),
            missing_outputs=missing,
        )

    async def run(self, run_id: str, site_id: str, domain: str) -> WorkerRunResult:
        """Run every worker once and return the aggregated result.

        Parameters
        ----------
        run_id: str
            Run identifier; sent to workers as ``X-Request-Id`` and attached to
            every log record of the run.
        site_id: str
            Site being diagnosed; scopes secret lookup.
        domain: str
            Bare domain forwarded to workers.

        Returns
        -------
        WorkerRunResult
            Always returned, even when every worker failed.
        """
        with run_id_scope(run_id):
            return await self._run(run_id, site_id, domain)

    async def _run(self, run_id: str, site_id: str, domain: str) -> WorkerRunResult:
        started_at = datetime.now(timezone.utc)
        specs = self._specs if self._specs is not None else all_workers()
        logger.info(
            "orchestrator.run.start",
            extra={
                "run_id": run_id,
                "site_id": site_id,
                "domain": domain,
                "workers": [s.key for s in specs],
            },
        )

        async with asyncio.TaskGroup() as tg:
            config_tasks = [
                tg.create_task(self._resolver.resolve(spec.key, site_id)) for spec in specs
            ]
        configs = [task.result() for task in config_tasks]

        async with asyncio.TaskGroup() as tg:
            call_tasks = [
                tg.create_task(self._call_worker(spec, cfg, run_id, site_id, domain))
                for spec, cfg in zip(specs, configs)
            ]
        results: List[WorkerCallResult] = [task.result() for task in call_tasks]

        counts: Dict[WorkerStatus, int] = {status: 0 for status in WorkerStatus}
        for result in results:
            counts[result.status] += 1
        success_count = counts[WorkerStatus.SUCCESS]
        failed_count = counts[WorkerStatus.FAILED] + counts[WorkerStatus.TIMEOUT]

        if success_count == len(results):
            status = RunStatus.COMPLETE
        elif success_count > 0:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.FAILED

        suggestions = generate_suggestions(run_id, site_id, results)
        insights = generate_insights(run_id, site_id, results)
        finished_at = datetime.now(timezone.utc)

        logger.info(
            "orchestrator.run.complete",
            extra={
                "run_id": run_id,
                "status": status.value,
                "success_count": success_count,
                "failed_count": failed_count,
                "skipped_count": counts[WorkerStatus.SKIPPED],
                "suggestions": len(suggestions),
                "insights": len(insights),
                "duration_ms": int((finished_at - started_at).total_seconds() * 1000),
            },
        )
        return WorkerRunResult(
            run_id=run_id,
            site_id=site_id,
            domain=domain,
            started_at=started_at,
            finished_at=finished_at,
            workers=results,
            success_count=success_count,
            failed_count=failed_count,
            skipped_count=counts[WorkerStatus.SKIPPED],
            status=status,
            suggestions=suggestions,
            insights=insights,
        )
