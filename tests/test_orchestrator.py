"""
Tests for the worker orchestrator using httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from seo_diagnostics.utils.correlation import get_run_id, set_run_id
from seo_diagnostics.workers import DEFAULT_WORKERS, WorkerSpec
from seo_diagnostics.workers.config_resolver import StaticSecretStore, WorkerConfigResolver
from seo_diagnostics.workers.models import RunStatus, WorkerStatus
from seo_diagnostics.workers.orchestrator import WorkerOrchestrator

SERP = WorkerSpec("serp_intel", "SERP", "/run", ("keywords",))
CRAWL = WorkerSpec("crawl_render", "Crawl", "/api/run", ("pages",))


def _secret(base_url, api_key="k"):
    return json.dumps({"base_url": base_url, "api_key": api_key})


def _orchestrator(handler, secrets, specs, timeout_seconds=5.0):
    orch = WorkerOrchestrator(
        WorkerConfigResolver(StaticSecretStore(secrets)),
        specs=specs,
        timeout_seconds=timeout_seconds,
    )
    orch.inject_http_client_for_testing(
        httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    return orch


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        WorkerOrchestrator(WorkerConfigResolver(StaticSecretStore({})), timeout_seconds=0)


@pytest.mark.asyncio
async def test_request_shape_and_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"ok": True, "data": {"keywords": [{"keyword": "pt", "position": 4}]}},
        )

    orch = _orchestrator(
        handler, {"serp_intel:site-1": _secret("https://serp.example/", "k1")}, [SERP]
    )
    result = await orch.run("run-1", "site-1", "example.com")
    await orch.aclose()

    (request,) = seen
    assert request.method == "POST"
    assert str(request.url) == "https://serp.example/run"
    assert request.headers["x-api-key"] == "k1"
    assert request.headers["authorization"] == "Bearer k1"
    assert request.headers["x-request-id"] == "run-1"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {
        "site_id": "site-1",
        "run_id": "run-1",
        "domain": "example.com",
    }

    (worker,) = result.workers
    assert worker.status == WorkerStatus.SUCCESS
    assert worker.normalized_metrics["keyword_count"] == 1
    assert worker.summary == "Tracking 1 keywords, 1 in top 10"
    assert worker.missing_outputs == []
    assert result.status == RunStatus.COMPLETE
    assert result.success_count == 1


@pytest.mark.asyncio
async def test_unconfigured_worker_is_skipped_without_a_call():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    orch = _orchestrator(handler, {}, [SERP])
    result = await orch.run("run-1", "site-1", "example.com")

    assert calls == []
    (worker,) = result.workers
    assert worker.status == WorkerStatus.SKIPPED
    assert worker.error_code == "NO_CONFIG"
    assert worker.duration_ms == 0
    assert worker.summary == "Skipped: No secret configured for serp_intel"
    assert result.skipped_count == 1
    assert result.failed_count == 0
    assert result.status == RunStatus.FAILED


@pytest.mark.asyncio
async def test_partial_secret_reports_missing_fields():
    orch = _orchestrator(lambda r: httpx.Response(200), {"serp_intel": "key-only"}, [SERP])
    result = await orch.run("run-1", "site-1", "example.com")
    (worker,) = result.workers
    assert worker.status == WorkerStatus.SKIPPED
    assert worker.error_detail == "Missing fields: base_url"


@pytest.mark.asyncio
async def test_slow_worker_times_out_while_others_succeed():
    async def handler(request):
        if request.url.host == "slow.example":
            await asyncio.sleep(5)
        return httpx.Response(200, json={"ok": True, "data": {"pages": []}})

    orch = _orchestrator(
        handler,
        {
            "serp_intel": _secret("https://slow.example"),
            "crawl_render": _secret("https://fast.example"),
        },
        [SERP, CRAWL],
        timeout_seconds=0.2,
    )
    result = await orch.run("run-1", "site-1", "example.com")

    serp, crawl = result.workers
    assert serp.status == WorkerStatus.TIMEOUT
    assert serp.error_code == "TIMEOUT"
    assert serp.summary == "Timeout after 200ms"
    assert crawl.status == WorkerStatus.SUCCESS
    assert result.failed_count == 1
    assert result.success_count == 1
    assert result.status == RunStatus.PARTIAL


@pytest.mark.asyncio
async def test_http_error_truncates_body():
    orch = _orchestrator(
        lambda r: httpx.Response(500, text="x" * 800),
        {"serp_intel": _secret("https://serp.example")},
        [SERP],
    )
    result = await orch.run("run-1", "site-1", "example.com")
    (worker,) = result.workers
    assert worker.status == WorkerStatus.FAILED
    assert worker.error_code == "HTTP_500"
    assert worker.error_detail == "x" * 500 + "..."
    assert worker.summary == "HTTP 500: " + "x" * 200
    assert result.status == RunStatus.FAILED


@pytest.mark.asyncio
async def test_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    orch = _orchestrator(handler, {"serp_intel": _secret("https://serp.example")}, [SERP])
    result = await orch.run("run-1", "site-1", "example.com")
    (worker,) = result.workers
    assert worker.status == WorkerStatus.FAILED
    assert worker.error_code == "NETWORK_ERROR"
    assert "connection refused" in worker.error_detail


@pytest.mark.asyncio
async def test_non_json_success_and_missing_outputs():
    orch = _orchestrator(
        lambda r: httpx.Response(200, text="<html>ok</html>"),
        {"serp_intel": _secret("https://serp.example")},
        [SERP],
    )
    result = await orch.run("run-1", "site-1", "example.com")
    (worker,) = result.workers
    assert worker.status == WorkerStatus.SUCCESS
    assert worker.normalized_metrics == {}
    assert worker.summary == "Run completed"
    assert worker.missing_outputs == ["keywords"]


@pytest.mark.asyncio
async def test_secret_required_outputs_override_worker_default():
    secret = json.dumps(
        {"base_url": "https://serp.example", "api_key": "k", "required_outputs": ["rankings"]}
    )
    orch = _orchestrator(
        lambda r: httpx.Response(200, json={"data": {"keywords": []}}),
        {"serp_intel": secret},
        [SERP],
    )
    result = await orch.run("run-1", "site-1", "example.com")
    assert result.workers[0].missing_outputs == ["rankings"]


@pytest.mark.asyncio
async def test_no_workers_is_complete():
    orch = _orchestrator(lambda r: httpx.Response(200), {}, [])
    result = await orch.run("run-1", "site-1", "example.com")
    assert result.workers == []
    assert result.status == RunStatus.COMPLETE
    assert result.finished_at >= result.started_at


@pytest.mark.asyncio
async def test_defaults_to_registry_and_builds_suggestions():
    def handler(request):
        if request.url.host == "cwv.example":
            return httpx.Response(
                200, json={"ok": True, "data": {"vitals": {"lcp": 5.1, "score": 35}}}
            )
        return httpx.Response(503, text="unavailable")

    orch = _orchestrator(
        handler,
        {
            "core_web_vitals": _secret("https://cwv.example"),
            "backlink_authority": _secret("https://links.example"),
        },
        None,
    )
    result = await orch.run("run-9", "site-1", "example.com")

    assert [w.worker_key for w in result.workers] == [s.key for s in DEFAULT_WORKERS]
    statuses = {w.worker_key: w.status for w in result.workers}
    assert statuses["core_web_vitals"] == WorkerStatus.SUCCESS
    assert statuses["backlink_authority"] == WorkerStatus.FAILED
    assert result.success_count == 1
    assert result.failed_count == 1
    assert result.skipped_count == len(DEFAULT_WORKERS) - 2
    assert result.status == RunStatus.PARTIAL
    assert [s.suggestion_id for s in result.suggestions] == ["sug_run-9_cwv_lcp_1"]
    assert [i.insight_id for i in result.insights] == [
        "ins_run-9_daily_summary",
        "ins_run-9_technical",
    ]


@pytest.mark.asyncio
async def test_unencodable_api_key_fails_only_that_worker():
    def handler(request):
        return httpx.Response(200, json={"ok": True, "data": {"pages": []}})

    orch = _orchestrator(
        handler,
        {
            "serp_intel": _secret("https://serp.example", "kéy"),
            "crawl_render": _secret("https://crawl.example"),
        },
        [SERP, CRAWL],
    )
    result = await orch.run("run-1", "site-1", "example.com")

    serp, crawl = result.workers
    assert serp.status == WorkerStatus.FAILED
    assert serp.error_code == "NETWORK_ERROR"
    assert serp.error_detail
    assert crawl.status == WorkerStatus.SUCCESS
    assert result.status == RunStatus.PARTIAL


@pytest.mark.asyncio
async def test_deeply_nested_body_is_treated_as_unparseable():
    def handler(request):
        if request.url.host == "serp.example":
            return httpx.Response(200, text="[" * 100000 + "]" * 100000)
        return httpx.Response(200, json={"ok": True, "data": {"pages": []}})

    orch = _orchestrator(
        handler,
        {
            "serp_intel": _secret("https://serp.example"),
            "crawl_render": _secret("https://crawl.example"),
        },
        [SERP, CRAWL],
    )
    result = await orch.run("run-1", "site-1", "example.com")

    serp, crawl = result.workers
    assert serp.status == WorkerStatus.SUCCESS
    assert serp.normalized_metrics == {}
    assert serp.missing_outputs == ["keywords"]
    assert crawl.status == WorkerStatus.SUCCESS
    assert result.status == RunStatus.COMPLETE


@pytest.mark.asyncio
async def test_worker_calls_are_dispatched_concurrently():
    barrier = asyncio.Barrier(2)

    async def handler(request):
        # Each call completes only once both are in flight
        await barrier.wait()
        return httpx.Response(200, json={"ok": True, "data": {"pages": []}})

    orch = _orchestrator(
        handler,
        {
            "serp_intel": _secret("https://serp.example"),
            "crawl_render": _secret("https://crawl.example"),
        },
        [SERP, CRAWL],
        timeout_seconds=1.0,
    )
    result = await orch.run("run-1", "site-1", "example.com")

    assert [w.status for w in result.workers] == [WorkerStatus.SUCCESS, WorkerStatus.SUCCESS]
    assert result.status == RunStatus.COMPLETE


@pytest.mark.asyncio
async def test_run_restores_callers_run_id():
    seen = []

    def handler(request):
        seen.append(get_run_id())
        return httpx.Response(200, json={"data": {"keywords": []}})

    set_run_id("outer")
    orch = _orchestrator(handler, {"serp_intel": _secret("https://serp.example")}, [SERP])
    await orch.run("run-7", "site-1", "example.com")

    assert seen == ["run-7"]
    assert get_run_id() == "outer"
