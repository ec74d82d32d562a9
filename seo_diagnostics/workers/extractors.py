"""Per-worker metric extraction from otherwise opaque worker payloads.

Each worker returns arbitrary JSON with an optional top-level ``data`` object
whose shape depends on the worker. ``EXTRACTORS`` maps a worker key to a named
function that pulls a small normalized metric dict out of that payload. Unknown
workers fall back to an extractor that returns no metrics.

Extraction never raises: fields that are absent or of an unexpected type are
left out (or set to None), and an extractor that trips over a malformed
payload yields an empty dict.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..utils.correlation import get_run_id

logger = logging.getLogger(__name__)

Extractor = Callable[[Dict[str, Any]], Dict[str, Any]]

MAX_DETAIL_ITEMS = 10


def _data(payload: Any) -> Optional[Dict[str, Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return None


def _dicts(value: Any) -> Optional[List[Dict[str, Any]]]:
    """List of dict items, or None when ``value`` is not a list."""
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, dict)]


def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _first(source: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among ``keys``, else None."""
    for key in keys:
        value = source.get(key)
        if value:
            return value
    return None


def _coalesce(*values: Any) -> Any:
    """First value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def _status(value: Optional[float], good: float, needs_improvement: float) -> Optional[str]:
    if not value:
        return None
    if value <= good:
        return "good"
    if value <= needs_improvement:
        return "needs_improvement"
    return "poor"


def _count(items: Iterable[Any], predicate: Callable[[Any], Any]) -> int:
    return sum(1 for item in items if predicate(item))


def extract_serp_intel(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword ranking distribution and positions 11-20 opportunities."""
    data = _data(payload) or {}
    keywords = _dicts(data.get("keywords"))
    if keywords is None:
        return {}

    def pos(k: Dict[str, Any]) -> Optional[float]:
        return _num(k.get("position")) or None

    striking = [k for k in keywords if pos(k) and 11 <= pos(k) <= 20]
    ranked = [pos(k) for k in keywords if pos(k) and pos(k) <= 100]
    return {
        "keyword_count": len(keywords),
        "in_top10": _count(keywords, lambda k: pos(k) and pos(k) <= 10),
        "in_pos_11_to_20": len(striking),
        "in_pos_21_to_50": _count(keywords, lambda k: pos(k) and 21 <= pos(k) <= 50),
        "not_ranking": _count(keywords, lambda k: not pos(k) or pos(k) > 100),
        "avg_position": sum(ranked) / len(ranked) if ranked else None,
        "opportunities": [
            {
                "keyword": _coalesce(k.get("keyword"), k.get("query")),
                "position": pos(k),
                "url": _coalesce(k.get("url"), k.get("landingPage")),
                "volume": k.get("volume"),
            }
            for k in striking[:MAX_DETAIL_ITEMS]
        ],
    }


def extract_crawl_render(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Crawl error/warning counts and issue breakdown by type."""
    data = _data(payload) or {}
    metrics: Dict[str, Any] = {}
    pages = _dicts(data.get("pages"))
    if pages is not None:

        def issues(p: Dict[str, Any]) -> Dict[str, Any]:
            value = p.get("issues")
            return value if isinstance(value, dict) else {}

        metrics["pages_checked"] = len(pages)
        metrics["total_pages_discovered"] = (
            _first(data, "totalPagesDiscovered", "totalPages") or len(pages)
        )
        metrics["errors_found"] = _count(pages, lambda p: p.get("hasError") or p.get("error"))
        metrics["warnings_found"] = _count(
            pages, lambda p: p.get("hasWarning") or p.get("warning")
        )
        metrics["issues_by_type"] = {
            "missing_title": _count(
                pages, lambda p: issues(p).get("missingTitle") or not p.get("title")
            ),
            "missing_h1": _count(pages, lambda p: issues(p).get("missingH1") or not p.get("h1")),
            "duplicate_meta": _count(pages, lambda p: issues(p).get("duplicateMeta")),
            "missing_meta": _count(
                pages, lambda p: issues(p).get("missingMeta") or not p.get("metaDescription")
            ),
            "canonical_issues": _count(
                pages,
                lambda p: issues(p).get("canonical") or issues(p).get("canonicalMismatch"),
            ),
            "broken_links": _count(
                pages,
                lambda p: isinstance(issues(p).get("brokenLinks"), list)
                and len(issues(p)["brokenLinks"]) > 0,
            ),
            "slow_pages": _count(pages, lambda p: (_num(p.get("loadTime")) or 0) > 3000),
        }
        metrics["top_issues"] = [
            {
                "url": p.get("url"),
                "issues": p.get("issues") or {"error": p.get("error")},
                "status_code": p.get("statusCode"),
            }
            for p in pages
            if p.get("hasError") or p.get("error") or p.get("issues")
        ][:MAX_DETAIL_ITEMS]

    summary = data.get("summary")
    if isinstance(summary, dict):
        overrides = {
            "pages_checked": "pagesChecked",
            "total_pages_discovered": "totalPages",
            "errors_found": "errors",
            "warnings_found": "warnings",
        }
        for metric, key in overrides.items():
            value = summary.get(key)
            if value:
                metrics[metric] = value
    return metrics


def extract_core_web_vitals(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Vitals (LCP/FCP in seconds, the rest in ms) with good/poor statuses."""
    data = _data(payload) or {}
    metrics: Dict[str, Any] = {}
    vitals = data.get("vitals")
    if isinstance(vitals, dict):
        v = vitals
        lcp_ms = _num(v.get("lcp_ms"))
        fcp_ms = _num(v.get("fcp_ms"))
        metrics["lcp"] = _coalesce(_num(v.get("lcp")), lcp_ms / 1000 if lcp_ms else None)
        metrics["fid"] = _coalesce(_num(v.get("fid")), _num(v.get("fid_ms")))
        metrics["cls"] = _num(v.get("cls"))
        metrics["inp"] = _coalesce(_num(v.get("inp")), _num(v.get("inp_ms")))
        metrics["score"] = _coalesce(_num(v.get("score")), _num(v.get("performance_score")))
        metrics["ttfb"] = _coalesce(_num(v.get("ttfb")), _num(v.get("ttfb_ms")))
        metrics["fcp"] = _coalesce(_num(v.get("fcp")), fcp_ms / 1000 if fcp_ms else None)
        metrics["tbt"] = _coalesce(_num(v.get("tbt")), _num(v.get("tbt_ms")))
        metrics["speed_index"] = _coalesce(
            _num(v.get("speed_index")), _num(v.get("speed_index_ms")), _num(v.get("speedIndex"))
        )
        fcp = _num(v.get("fcp"))
        metrics["fcp_ms"] = _coalesce(fcp_ms, fcp * 1000 if fcp else None)
        metrics["lcp_status"] = _status(metrics["lcp"], 2.5, 4.0)
        metrics["cls_status"] = _status(metrics["cls"], 0.1, 0.25)
        metrics["inp_status"] = _status(metrics["inp"], 200, 500)

    pages = _dicts(data.get("urls") or data.get("pages"))
    if pages is not None:
        metrics["failing_urls_count"] = _count(
            pages, lambda p: (_num(p.get("score")) or 0) and _num(p.get("score")) < 50
        )
        metrics["slow_urls"] = [
            {"url": p.get("url"), "lcp": p.get("lcp"), "cls": p.get("cls"), "score": p.get("score")}
            for p in pages
            if (_num(p.get("lcp")) or 0) > 2500
        ][:MAX_DETAIL_ITEMS]
    return metrics


def extract_backlink_authority(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Domain authority, link counts and 30-day link velocity."""
    data = _data(payload)
    if data is None:
        return {}
    new_links = _num(_first(data, "new_links_30d", "newLinks30d")) or 0
    lost_links = _num(_first(data, "lost_links_30d", "lostLinks30d")) or 0
    metrics: Dict[str, Any] = {
        "domain_authority": _first(data, "domain_authority", "domainAuthority"),
        "backlink_count": _first(data, "backlink_count", "totalBacklinks"),
        "referring_domains": _first(data, "referring_domains", "referringDomains"),
        "new_links_30d": new_links,
        "lost_links_30d": lost_links,
        "link_velocity": new_links - lost_links,
    }
    lost = _dicts(data.get("lostLinks"))
    if lost is not None:
        metrics["lost_links_details"] = [
            {
                "source_url": _first(link, "sourceUrl", "source"),
                "target_url": _first(link, "targetUrl", "target"),
                "domain_rating": _first(link, "domainRating", "dr"),
                "lost_date": _first(link, "lostDate", "date"),
            }
            for link in lost[:MAX_DETAIL_ITEMS]
        ]
    return metrics


def extract_competitive_snapshot(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Competitor authority and keyword/content gaps."""
    data = _data(payload) or {}
    metrics: Dict[str, Any] = {}
    competitors = _dicts(data.get("competitors"))
    if competitors is not None:
        metrics["competitor_count"] = len(competitors)
        metrics["avg_competitor_da"] = (
            sum(_num(c.get("domainAuthority")) or 0 for c in competitors) / len(competitors)
            if competitors
            else None
        )
        metrics["competitors"] = [
            {"domain": c.get("domain"), "da": c.get("domainAuthority"), "traffic": c.get("traffic")}
            for c in competitors[:5]
        ]
    gaps = _dicts(data.get("gaps"))
    if gaps is not None:
        metrics["content_gaps"] = [
            {
                "keyword": g.get("keyword"),
                "competitor_url": _first(g, "competitorUrl", "url"),
                "volume": g.get("volume"),
                "difficulty": g.get("difficulty"),
            }
            for g in gaps[:MAX_DETAIL_ITEMS]
        ]
        metrics["gap_count"] = len(gaps)
    new_pages = data.get("newPages")
    if isinstance(new_pages, list):
        metrics["new_competitor_pages"] = new_pages[:MAX_DETAIL_ITEMS]
    return metrics


def _is_decaying(page: Dict[str, Any]) -> bool:
    return bool(
        page.get("isDecaying")
        or (_num(page.get("decayScore")) or 0) > 0.5
        or (_num(page.get("decay_score")) or 0) > 0.5
    )


def extract_content_decay(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pages losing traffic over time."""
    data = _data(payload) or {}
    pages = _dicts(data.get("pages"))
    if pages is None:
        return {}
    decaying = [p for p in pages if _is_decaying(p)]
    return {
        "pages_analyzed": len(pages),
        "decaying_pages": len(decaying),
        "decayed_pages_list": [
            {
                "url": p.get("url"),
                "title": p.get("title"),
                "decay_score": _first(p, "decayScore", "decay_score"),
                "traffic_drop": _first(p, "trafficDrop", "traffic_drop"),
                "last_updated": _first(p, "lastUpdated", "last_updated"),
            }
            for p in decaying[:MAX_DETAIL_ITEMS]
        ],
    }


def extract_content_qa(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _data(payload)
    if data is None:
        return {}
    issues = data.get("issues")
    return {
        "issues_found": data.get("issueCount")
        or (len(issues) if isinstance(issues, list) else 0),
        "passed_checks": data.get("passedCount") or 0,
    }


def extract_content_generator(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _data(payload)
    if data is None:
        return {}
    drafts = data.get("drafts")
    return {
        "drafts_generated": (len(drafts) if isinstance(drafts, list) else 0)
        or (1 if data.get("content") else 0)
    }


def extract_notifications(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _data(payload)
    if data is None:
        return {}
    return {"notifications_sent": data.get("sent") or 0}


def extract_nothing(payload: Dict[str, Any]) -> Dict[str, Any]:  # noqa: ARG001
    """Fallback for workers without a dedicated extractor."""
    return {}


EXTRACTORS: Dict[str, Extractor] = {
    "serp_intel": extract_serp_intel,
    "crawl_render": extract_crawl_render,
    "core_web_vitals": extract_core_web_vitals,
    "backlink_authority": extract_backlink_authority,
    "competitive_snapshot": extract_competitive_snapshot,
    "content_decay": extract_content_decay,
    "content_qa": extract_content_qa,
    "content_generator": extract_content_generator,
    "notifications": extract_notifications,
}


def extract_metrics(worker_key: str, payload: Any) -> Dict[str, Any]:
    """Run the worker's extractor; malformed payloads yield ``{}``."""
    extractor = EXTRACTORS.get(worker_key, extract_nothing)
    if not isinstance(payload, dict):
        return {}
    try:
        return extractor(payload)
    except (TypeError, ValueError, AttributeError, KeyError, ZeroDivisionError) as exc:
        logger.warning(
            "extractors.malformed_payload",
            extra={"run_id": get_run_id(), "worker_key": worker_key, "error": str(exc)},
        )
        return {}


def _fmt(value: Any) -> str:
    return "n/a" if value is None else str(value)


def summarize(worker_key: str, payload: Any, metrics: Dict[str, Any]) -> str:
    """One-line human summary for a successful worker call."""
    m = metrics
    if worker_key == "serp_intel" and "keyword_count" in m:
        return f"Tracking {m['keyword_count']} keywords, {m['in_top10']} in top 10"
    if worker_key == "crawl_render" and "pages_checked" in m:
        return (
            f"Checked {m['pages_checked']} pages, {m.get('errors_found') or 0} errors, "
            f"{m.get('warnings_found') or 0} warnings"
        )
    if worker_key == "core_web_vitals" and "score" in m:
        return f"Performance score: {_fmt(m['score'])}, LCP: {_fmt(m.get('lcp'))}s"
    if worker_key == "backlink_authority" and m.get("domain_authority") is not None:
        return (
            f"DA: {m['domain_authority']}, {_fmt(m.get('backlink_count'))} backlinks "
            f"from {_fmt(m.get('referring_domains'))} domains"
        )
    if worker_key == "competitive_snapshot" and "competitor_count" in m:
        return f"Analyzed {m['competitor_count']} competitors"
    if worker_key == "content_decay" and "pages_analyzed" in m:
        return f"{m['decaying_pages']} of {m['pages_analyzed']} pages showing decay"
    if worker_key == "content_qa" and "issues_found" in m:
        return f"Found {m['issues_found']} content issues"

    if isinstance(payload, dict):
        if payload.get("ok"):
            return "Completed successfully"
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return "Run completed"


def missing_outputs(required: Iterable[str], payload: Any) -> List[str]:
    """Required outputs absent (or null) under the payload's ``data`` object."""
    data = _data(payload) or {}
    return [key for key in required if data.get(key) is None]
