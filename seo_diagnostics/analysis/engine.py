"""Drop classification engine.

Compares a recent "current" window against the "baseline" window immediately
before it for the web-traffic and search-performance signals, classifies the
primary root cause through an ordered decision tree, and ranks the page
clusters, pages and queries that lost the most clicks.

Every function here is pure: inputs are never mutated and identical inputs
produce equal results.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from ..config.models import AnalysisSettings
from .clusters import get_page_cluster
from .models import (
    AnalysisResult,
    Anomaly,
    AnomalyFlags,
    AnomalyType,
    Classification,
    ClassificationResult,
    ClusterLoss,
    Confidence,
    Deltas,
    LosingPage,
    LosingQuery,
    PageRecord,
    QueryRecord,
    SearchDeltas,
    SearchPerformanceRecord,
    TrafficDeltas,
    WebTrafficRecord,
)
from .statistics import compute_metric_delta, percent_change, window_mean

logger = logging.getLogger(__name__)

_DEFAULT_SETTINGS = AnalysisSettings()


def aggregate_traffic_by_date(
    records: Iterable[WebTrafficRecord],
) -> List[WebTrafficRecord]:
    """Collapse per-dimension traffic rows into one row per date (summed)."""
    by_date: Dict[dt.date, List[int]] = {}
    for rec in records:
        totals = by_date.setdefault(rec.date, [0, 0])
        totals[0] += rec.sessions
        totals[1] += rec.users
    return [
        WebTrafficRecord(date=day, sessions=sessions, users=users)
        for day, (sessions, users) in by_date.items()
    ]


def aggregate_search_by_date(
    records: Iterable[SearchPerformanceRecord],
) -> List[SearchPerformanceRecord]:
    """Collapse per-dimension search rows into one row per date.

    Clicks and impressions are summed; CTR and position are averaged over the
    rows of the day.
    """
    by_date: Dict[dt.date, Dict[str, float]] = {}
    for rec in records:
        acc = by_date.setdefault(
            rec.date,
            {"clicks": 0, "impressions": 0, "ctr": 0.0, "position": 0.0, "n": 0},
        )
        acc["clicks"] += rec.clicks
        acc["impressions"] += rec.impressions
        acc["ctr"] += rec.ctr
        acc["position"] += rec.position
        acc["n"] += 1
    return [
        SearchPerformanceRecord(
            date=day,
            clicks=int(acc["clicks"]),
            impressions=int(acc["impressions"]),
            ctr=acc["ctr"] / acc["n"],
            position=acc["position"] / acc["n"],
        )
        for day, acc in by_date.items()
    ]


def _split_windows(rows: Sequence, settings: AnalysisSettings) -> Tuple[list, list]:
    ordered = sorted(rows, key=lambda r: r.date, reverse=True)
    current_len = settings.current_window_days
    baseline_end = current_len + settings.baseline_window_days
    return ordered[:current_len], ordered[current_len:baseline_end]


def compute_deltas(
    traffic: Sequence[WebTrafficRecord],
    search: Sequence[SearchPerformanceRecord],
    settings: Optional[AnalysisSettings] = None,
) -> Deltas:
    """Compute current-vs-baseline deltas and drop flags for both signals.

    Parameters
    ----------
    traffic: Sequence[WebTrafficRecord]
        Web-traffic rows; collapsed to one row per date before windowing.
    search: Sequence[SearchPerformanceRecord]
        Search-performance rows; collapsed to one row per date before
        windowing.
    settings: Optional[AnalysisSettings]
        Window sizes and thresholds. Defaults apply when omitted.

    Returns
    -------
    Deltas
        Sessions, clicks and impressions drop flags require both the percent
        and the z-score threshold. The CTR flag is percent-only; position has
        no flag.
    """
    cfg = settings or _DEFAULT_SETTINGS
    traffic_current, traffic_baseline = _split_windows(
        aggregate_traffic_by_date(traffic), cfg
    )
    search_current, search_baseline = _split_windows(
        aggregate_search_by_date(search), cfg
    )

    sessions = compute_metric_delta(
        [r.sessions for r in traffic_current], [r.sessions for r in traffic_baseline]
    )
    users = compute_metric_delta(
        [r.users for r in traffic_current], [r.users for r in traffic_baseline]
    )
    clicks = compute_metric_delta(
        [r.clicks for r in search_current], [r.clicks for r in search_baseline]
    )
    impressions = compute_metric_delta(
        [r.impressions for r in search_current],
        [r.impressions for r in search_baseline],
    )

    current_ctr = window_mean([r.ctr for r in search_current])
    baseline_ctr = window_mean([r.ctr for r in search_baseline])
    current_position = window_mean([r.position for r in search_current])
    baseline_position = window_mean([r.position for r in search_baseline])
    ctr_delta = percent_change(current_ctr, baseline_ctr)

    def _dropped(delta) -> bool:
        return (
            delta.percent_delta <= cfg.drop_pct_threshold
            and delta.z_score <= cfg.z_score_threshold
        )

    return Deltas(
        traffic=TrafficDeltas(
            sessions=sessions,
            users=users,
            sessions_drop_flag=_dropped(sessions),
        ),
        search=SearchDeltas(
            clicks=clicks,
            impressions=impressions,
            current_ctr=current_ctr,
            baseline_ctr=baseline_ctr,
            ctr_delta=ctr_delta,
            current_position=current_position,
            baseline_position=baseline_position,
            position_delta=percent_change(current_position, baseline_position),
            clicks_drop_flag=_dropped(clicks),
            impressions_drop_flag=_dropped(impressions),
            ctr_drop_flag=ctr_delta <= cfg.drop_pct_threshold,
        ),
    )


def is_tracking_gap(deltas: Deltas) -> bool:
    """Traffic dropped while neither search clicks nor impressions did."""
    return (
        deltas.traffic.sessions_drop_flag
        and not deltas.search.clicks_drop_flag
        and not deltas.search.impressions_drop_flag
    )


def classify_primary_issue(
    deltas: Deltas,
    cluster_losses: Sequence[ClusterLoss],
    settings: Optional[AnalysisSettings] = None,
) -> ClassificationResult:
    """Classify the primary issue; the first matching rule wins.

    Order: tracking/attribution gap, visibility loss, CTR loss, page cluster
    regression (largest cluster's loss share at or above the threshold),
    inconclusive.
    """
    cfg = settings or _DEFAULT_SETTINGS
    search = deltas.search

    if is_tracking_gap(deltas):
        return ClassificationResult(
            classification=Classification.TRACKING_OR_ATTRIBUTION_GAP,
            confidence=Confidence.HIGH,
        )
    if search.impressions_drop_flag:
        return ClassificationResult(
            classification=Classification.VISIBILITY_LOSS,
            confidence=Confidence.HIGH,
        )
    if search.clicks_drop_flag and search.ctr_drop_flag:
        return ClassificationResult(
            classification=Classification.CTR_LOSS,
            confidence=Confidence.MEDIUM,
        )
    if cluster_losses and cluster_losses[0].loss_share >= cfg.cluster_loss_share_threshold:
        return ClassificationResult(
            classification=Classification.PAGE_CLUSTER_REGRESSION,
            confidence=Confidence.HIGH,
        )
    return ClassificationResult(
        classification=Classification.INCONCLUSIVE,
        confidence=Confidence.LOW,
    )


def _sum_clicks_by(rows: Iterable, key) -> Dict[Hashable, float]:
    totals: Dict[Hashable, float] = {}
    for row in rows:
        k = key(row)
        totals[k] = totals.get(k, 0) + row.clicks
    return totals


def _positive_losses(
    baseline: Dict[Hashable, float], current: Dict[Hashable, float]
) -> List[Tuple[Hashable, float]]:
    losses = []
    for k, base in baseline.items():
        loss = base - current.get(k, 0)
        if loss > 0:
            losses.append((k, loss))
    # sorted() is stable: equal losses keep input order
    return sorted(losses, key=lambda item: item[1], reverse=True)


def compute_cluster_losses(
    current_pages: Sequence[PageRecord], baseline_pages: Sequence[PageRecord]
) -> List[ClusterLoss]:
    """Click loss per page cluster, largest first.

    Only clusters with positive loss are returned. ``loss_share`` is the
    cluster's fraction of the total positive loss, so shares sum to 1 whenever
    any cluster lost clicks.
    """
    current_by_cluster = _sum_clicks_by(current_pages, lambda p: get_page_cluster(p.page_path))
    baseline_by_cluster = _sum_clicks_by(baseline_pages, lambda p: get_page_cluster(p.page_path))

    all_clusters = list(dict.fromkeys([*current_by_cluster, *baseline_by_cluster]))
    total_loss = sum(
        max(0.0, baseline_by_cluster.get(c, 0) - current_by_cluster.get(c, 0))
        for c in all_clusters
    )

    losses: List[ClusterLoss] = []
    for cluster in all_clusters:
        baseline_clicks = baseline_by_cluster.get(cluster, 0)
        current_clicks = current_by_cluster.get(cluster, 0)
        click_loss = baseline_clicks - current_clicks
        if click_loss > 0:
            losses.append(
                ClusterLoss(
                    cluster=cluster,
                    baseline_clicks=baseline_clicks,
                    current_clicks=current_clicks,
                    click_loss=click_loss,
                    loss_share=click_loss / total_loss if total_loss > 0 else 0.0,
                )
            )
    return sorted(losses, key=lambda c: c.click_loss, reverse=True)


def compute_top_losing_pages(
    current_pages: Sequence[PageRecord],
    baseline_pages: Sequence[PageRecord],
    limit: int = 10,
) -> List[LosingPage]:
    """Pages with the largest positive click loss, each tagged with its cluster."""
    ranked = _positive_losses(
        _sum_clicks_by(baseline_pages, lambda p: p.page_path),
        _sum_clicks_by(current_pages, lambda p: p.page_path),
    )
    return [
        LosingPage(page=page, click_loss=loss, cluster=get_page_cluster(page))
        for page, loss in ranked[:limit]
    ]


def compute_top_losing_queries(
    current_queries: Sequence[QueryRecord],
    baseline_queries: Sequence[QueryRecord],
    limit: int = 10,
) -> List[LosingQuery]:
    """Queries with the largest positive click loss."""
    ranked = _positive_losses(
        _sum_clicks_by(baseline_queries, lambda q: q.query),
        _sum_clicks_by(current_queries, lambda q: q.query),
    )
    return [LosingQuery(query=query, click_loss=loss) for query, loss in ranked[:limit]]


def _filter_dates(rows: Sequence, dates: Set[dt.date]) -> list:
    return [r for r in rows if r.date in dates]


def run_analysis(
    traffic: Sequence[WebTrafficRecord],
    search_daily: Sequence[SearchPerformanceRecord],
    pages: Sequence[PageRecord],
    queries: Sequence[QueryRecord],
    settings: Optional[AnalysisSettings] = None,
) -> AnalysisResult:
    """Run the full analysis over the four signal views.

    Parameters
    ----------
    traffic: Sequence[WebTrafficRecord]
        Daily web-traffic rows.
    search_daily: Sequence[SearchPerformanceRecord]
        Daily search-performance rows.
    pages: Sequence[PageRecord]
        Per-page search rows. Their distinct dates, most recent first, define
        the page/query current and baseline windows.
    queries: Sequence[QueryRecord]
        Per-query search rows, windowed with the page dates.
    settings: Optional[AnalysisSettings]
        Window sizes, thresholds and top-loser limit.

    Returns
    -------
    AnalysisResult
        A new result object; none of the inputs are modified.
    """
    cfg = settings or _DEFAULT_SETTINGS
    deltas = compute_deltas(traffic, search_daily, cfg)

    page_dates = sorted({p.date for p in pages}, reverse=True)
    current_len = cfg.current_window_days
    current_dates = page_dates[:current_len]
    baseline_dates = page_dates[current_len : current_len + cfg.baseline_window_days]
    current_set, baseline_set = set(current_dates), set(baseline_dates)

    sorted_pages = sorted(pages, key=lambda p: p.date, reverse=True)
    current_pages = _filter_dates(sorted_pages, current_set)
    baseline_pages = _filter_dates(sorted_pages, baseline_set)

    sorted_queries = sorted(queries, key=lambda q: q.date, reverse=True)
    current_queries = _filter_dates(sorted_queries, current_set)
    baseline_queries = _filter_dates(sorted_queries, baseline_set)

    cluster_losses = compute_cluster_losses(current_pages, baseline_pages)
    top_pages = compute_top_losing_pages(
        current_pages, baseline_pages, cfg.top_losers_limit
    )
    top_queries = compute_top_losing_queries(
        current_queries, baseline_queries, cfg.top_losers_limit
    )
    result = classify_primary_issue(deltas, cluster_losses, cfg)

    logger.info(
        "analysis.complete",
        extra={
            "classification": result.classification.value,
            "confidence": result.confidence.value,
            "cluster_count": len(cluster_losses),
            "top_cluster": cluster_losses[0].cluster if cluster_losses else None,
        },
    )

    return AnalysisResult(
        deltas=deltas,
        classification=result.classification,
        confidence=result.confidence,
        cluster_losses=cluster_losses,
        top_losing_pages=top_pages,
        top_losing_queries=top_queries,
        anomaly_flags=AnomalyFlags(
            impressions_drop_flag=deltas.search.impressions_drop_flag,
            clicks_drop_flag=deltas.search.clicks_drop_flag,
            ctr_drop_flag=deltas.search.ctr_drop_flag,
            sessions_drop_flag=deltas.traffic.sessions_drop_flag,
            tracking_gap_flag=is_tracking_gap(deltas),
        ),
        current_dates=current_dates,
        baseline_dates=baseline_dates,
    )


def derive_anomalies(
    result: AnalysisResult,
    as_of: dt.date,
    settings: Optional[AnalysisSettings] = None,
) -> List[Anomaly]:
    """Turn raised flags into anomaly records for persistence.

    One record per raised drop flag, one for a tracking gap, and one for the
    top cluster when its loss share reaches the cluster threshold.
    """
    cfg = settings or _DEFAULT_SETTINGS
    search = result.deltas.search
    traffic = result.deltas.traffic
    flags = result.anomaly_flags
    organic = {"channel": "Organic Search"}
    anomalies: List[Anomaly] = []

    def _from_delta(kind: AnomalyType, metric: str, delta, scope) -> Anomaly:
        return Anomaly(
            anomaly_type=kind,
            metric=metric,
            start_date=as_of,
            baseline_value=delta.baseline_sum,
            observed_value=delta.current_sum,
            percent_delta=delta.percent_delta,
            z_score=delta.z_score,
            scope=scope,
        )

    if flags.impressions_drop_flag:
        anomalies.append(
            _from_delta(AnomalyType.IMPRESSIONS_DROP, "impressions", search.impressions, organic)
        )
    if flags.clicks_drop_flag:
        anomalies.append(
            _from_delta(AnomalyType.TRAFFIC_DROP, "clicks", search.clicks, organic)
        )
    if flags.ctr_drop_flag:
        anomalies.append(
            Anomaly(
                anomaly_type=AnomalyType.CTR_DROP,
                metric="ctr",
                start_date=as_of,
                baseline_value=search.baseline_ctr,
                observed_value=search.current_ctr,
                percent_delta=search.ctr_delta,
                scope=organic,
            )
        )
    if flags.sessions_drop_flag:
        anomalies.append(
            _from_delta(
                AnomalyType.TRAFFIC_DROP, "sessions", traffic.sessions, {"source": "web_traffic"}
            )
        )
    if flags.tracking_gap_flag:
        anomalies.append(
            _from_delta(
                AnomalyType.TRACKING_GAP, "sessions", traffic.sessions, {"source": "web_traffic"}
            )
        )
    if result.cluster_losses:
        top = result.cluster_losses[0]
        if top.loss_share >= cfg.cluster_loss_share_threshold:
            anomalies.append(
                Anomaly(
                    anomaly_type=AnomalyType.PAGE_CLUSTER_DROP,
                    metric="clicks",
                    start_date=as_of,
                    baseline_value=top.baseline_clicks,
                    observed_value=top.current_clicks,
                    percent_delta=percent_change(top.current_clicks, top.baseline_clicks),
                    scope={"page_cluster": top.cluster, "loss_share": top.loss_share},
                )
            )
    return anomalies
