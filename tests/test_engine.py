"""
Tests for the drop classification engine.
"""

import datetime as dt

import pytest
from sample_signals import CURRENT_DAYS, END, day, pages, queries, search, traffic, value

from seo_diagnostics.analysis import run_analysis
from seo_diagnostics.analysis.engine import (
    aggregate_search_by_date,
    aggregate_traffic_by_date,
    classify_primary_issue,
    compute_cluster_losses,
    compute_deltas,
    compute_top_losing_pages,
    compute_top_losing_queries,
    derive_anomalies,
)
from seo_diagnostics.analysis.models import (
    AnomalyType,
    Classification,
    ClusterLoss,
    Confidence,
    Deltas,
    MetricDelta,
    PageRecord,
    QueryRecord,
    SearchDeltas,
    SearchPerformanceRecord,
    TrafficDeltas,
    WebTrafficRecord,
)
from seo_diagnostics.config.models import AnalysisSettings

D1 = dt.date(2024, 3, 1)
D2 = dt.date(2024, 3, 2)


def _flat_delta() -> MetricDelta:
    return MetricDelta(
        current_sum=0, baseline_sum=0, absolute_delta=0, percent_delta=0, z_score=0
    )


def _deltas(sessions=False, clicks=False, impressions=False, ctr=False) -> Deltas:
    d = _flat_delta()
    return Deltas(
        traffic=TrafficDeltas(sessions=d, users=d, sessions_drop_flag=sessions),
        search=SearchDeltas(
            clicks=d,
            impressions=d,
            current_ctr=0.0,
            baseline_ctr=0.0,
            ctr_delta=0.0,
            current_position=0.0,
            baseline_position=0.0,
            position_delta=0.0,
            clicks_drop_flag=clicks,
            impressions_drop_flag=impressions,
            ctr_drop_flag=ctr,
        ),
    )


def _cluster(share: float) -> ClusterLoss:
    return ClusterLoss(
        cluster="/blog/*",
        baseline_clicks=100,
        current_clicks=0,
        click_loss=100,
        loss_share=share,
    )


# ============================================================================
# Aggregation
# ============================================================================


def test_aggregate_traffic_sums_per_date():
    rows = [
        WebTrafficRecord(date=D1, sessions=10, users=8, channel="Organic Search"),
        WebTrafficRecord(date=D1, sessions=5, users=4, channel="Direct"),
        WebTrafficRecord(date=D2, sessions=7, users=6),
    ]
    daily = aggregate_traffic_by_date(rows)
    assert [(r.date, r.sessions, r.users) for r in daily] == [(D1, 15, 12), (D2, 7, 6)]


def test_aggregate_search_sums_counts_and_averages_rates():
    rows = [
        SearchPerformanceRecord(date=D1, clicks=10, impressions=100, ctr=0.1, position=2.0),
        SearchPerformanceRecord(date=D1, clicks=20, impressions=400, ctr=0.05, position=6.0),
    ]
    (daily,) = aggregate_search_by_date(rows)
    assert daily.clicks == 30
    assert daily.impressions == 500
    assert daily.ctr == pytest.approx(0.075)
    assert daily.position == pytest.approx(4.0)


# ============================================================================
# compute_deltas()
# ============================================================================


def test_deltas_stable_series_has_no_flags():
    deltas = compute_deltas(traffic(), search())
    assert not deltas.traffic.sessions_drop_flag
    assert not deltas.search.clicks_drop_flag
    assert not deltas.search.impressions_drop_flag
    assert not deltas.search.ctr_drop_flag


def test_deltas_flag_requires_percent_and_z_score():
    """Test a sharp drop raises both thresholds and sets the flag."""
    deltas = compute_deltas(traffic(0.4), search())
    sessions = deltas.traffic.sessions
    assert sessions.percent_delta <= -30
    assert sessions.z_score <= -2
    assert deltas.traffic.sessions_drop_flag


def test_deltas_window_sizes_from_settings():
    settings = AnalysisSettings(current_window_days=2, baseline_window_days=5)
    deltas = compute_deltas(traffic(), search(), settings)
    assert deltas.traffic.sessions.current_sum == 2 * 1000
    expected_baseline = sum(value(i, 1000) for i in range(2, 7))
    assert deltas.traffic.sessions.baseline_sum == expected_baseline


def test_ctr_flag_is_percent_only():
    deltas = compute_deltas(traffic(), search(current_ctr=0.02))
    assert deltas.search.ctr_delta == pytest.approx(-50.0)
    assert deltas.search.ctr_drop_flag


def test_deltas_empty_signals():
    deltas = compute_deltas([], [])
    assert deltas.traffic.sessions.current_sum == 0
    assert deltas.search.ctr_delta == 0.0
    assert not deltas.traffic.sessions_drop_flag


# ============================================================================
# classify_primary_issue()
# ============================================================================


def test_classify_tracking_gap():
    result = classify_primary_issue(_deltas(sessions=True), [])
    assert result.classification == Classification.TRACKING_OR_ATTRIBUTION_GAP
    assert result.confidence == Confidence.HIGH


def test_classify_sessions_and_impressions_is_visibility_loss():
    result = classify_primary_issue(_deltas(sessions=True, impressions=True), [])
    assert result.classification == Classification.VISIBILITY_LOSS
    assert result.confidence == Confidence.HIGH


def test_classify_visibility_beats_ctr():
    result = classify_primary_issue(_deltas(clicks=True, impressions=True, ctr=True), [])
    assert result.classification == Classification.VISIBILITY_LOSS


def test_classify_ctr_loss():
    result = classify_primary_issue(_deltas(clicks=True, ctr=True), [])
    assert result.classification == Classification.CTR_LOSS
    assert result.confidence == Confidence.MEDIUM


def test_classify_ctr_without_clicks_falls_through():
    result = classify_primary_issue(_deltas(ctr=True), [_cluster(0.65)])
    assert result.classification == Classification.PAGE_CLUSTER_REGRESSION
    assert result.confidence == Confidence.HIGH


def test_classify_cluster_threshold_is_inclusive():
    result = classify_primary_issue(_deltas(), [_cluster(0.6)])
    assert result.classification == Classification.PAGE_CLUSTER_REGRESSION


def test_classify_cluster_threshold_from_settings():
    settings = AnalysisSettings(cluster_loss_share_threshold=0.5)
    hit = classify_primary_issue(_deltas(), [_cluster(0.65)], settings)
    miss = classify_primary_issue(_deltas(), [_cluster(0.45)], settings)
    assert hit.classification == Classification.PAGE_CLUSTER_REGRESSION
    assert miss.classification == Classification.INCONCLUSIVE


def test_classify_inconclusive():
    result = classify_primary_issue(_deltas(clicks=True), [])
    assert result.classification == Classification.INCONCLUSIVE
    assert result.confidence == Confidence.LOW


# ============================================================================
# Cluster, page and query losses
# ============================================================================


def test_cluster_losses_invariants():
    current = [
        PageRecord(date=D2, page_path="/blog/a", clicks=10),
        PageRecord(date=D2, page_path="/services/b", clicks=50),
        PageRecord(date=D2, page_path="/about/x", clicks=5),
    ]
    baseline = [
        PageRecord(date=D1, page_path="/blog/a", clicks=100),
        PageRecord(date=D1, page_path="/services/b", clicks=40),
        PageRecord(date=D1, page_path="/about/x", clicks=30),
        PageRecord(date=D1, page_path="/locations/y", clicks=20),
    ]
    losses = compute_cluster_losses(current, baseline)

    assert [c.cluster for c in losses] == ["/blog/*", "/about/*", "/locations/*"]
    assert all(c.click_loss > 0 for c in losses)
    assert [c.click_loss for c in losses] == sorted(
        (c.click_loss for c in losses), reverse=True
    )
    assert sum(c.loss_share for c in losses) == pytest.approx(1.0)
    assert losses[0].loss_share == pytest.approx(90 / 135)


def test_cluster_losses_ties_keep_input_order():
    baseline = [
        PageRecord(date=D1, page_path="/blog/a", clicks=10),
        PageRecord(date=D1, page_path="/services/b", clicks=10),
    ]
    losses = compute_cluster_losses([], baseline)
    assert [c.cluster for c in losses] == ["/blog/*", "/services/*"]
    assert [c.loss_share for c in losses] == [0.5, 0.5]


def test_cluster_losses_empty_when_nothing_lost():
    pages_ = [PageRecord(date=D1, page_path="/blog/a", clicks=10)]
    assert compute_cluster_losses(pages_, pages_) == []


def test_top_losing_pages_limit_and_cluster_tag():
    baseline = [
        PageRecord(date=D1, page_path="/blog/a", clicks=100),
        PageRecord(date=D1, page_path="/blog/b", clicks=50),
        PageRecord(date=D1, page_path="/services/c", clicks=80),
    ]
    current = [PageRecord(date=D2, page_path="/blog/b", clicks=60)]
    top = compute_top_losing_pages(current, baseline, limit=2)
    assert [(p.page, p.click_loss, p.cluster) for p in top] == [
        ("/blog/a", 100, "/blog/*"),
        ("/services/c", 80, "/services/*"),
    ]


def test_top_losing_queries():
    baseline = [
        QueryRecord(date=D1, query="knee pain", clicks=30),
        QueryRecord(date=D1, query="clinic hours", clicks=5),
    ]
    current = [QueryRecord(date=D2, query="knee pain", clicks=10)]
    top = compute_top_losing_queries(current, baseline)
    assert [(q.query, q.click_loss) for q in top] == [
        ("knee pain", 20),
        ("clinic hours", 5),
    ]


# ============================================================================
# run_analysis()
# ============================================================================


def test_run_analysis_tracking_gap():
    result = run_analysis(traffic(0.4), search(), pages(), queries())
    assert result.classification == Classification.TRACKING_OR_ATTRIBUTION_GAP
    assert result.confidence == Confidence.HIGH
    assert result.anomaly_flags.tracking_gap_flag


def test_run_analysis_visibility_loss():
    result = run_analysis(
        traffic(), search(clicks_factor=0.4, impressions_factor=0.4), pages(), queries()
    )
    assert result.classification == Classification.VISIBILITY_LOSS
    assert result.anomaly_flags.impressions_drop_flag
    assert not result.anomaly_flags.tracking_gap_flag


def test_run_analysis_ctr_loss():
    result = run_analysis(
        traffic(), search(clicks_factor=0.4, current_ctr=0.016), pages(), queries()
    )
    assert result.classification == Classification.CTR_LOSS
    assert result.confidence == Confidence.MEDIUM


def test_run_analysis_cluster_regression():
    result = run_analysis(
        traffic(), search(), pages(current_blog_clicks=0, services_clicks=10), queries()
    )
    assert result.classification == Classification.PAGE_CLUSTER_REGRESSION
    assert result.cluster_losses[0].cluster == "/blog/*"
    assert result.top_losing_pages[0].page == "/blog/post-a"


def test_run_analysis_inconclusive():
    result = run_analysis(traffic(), search(), pages(), queries())
    assert result.classification == Classification.INCONCLUSIVE
    assert result.confidence == Confidence.LOW


def test_run_analysis_page_windows_follow_distinct_dates():
    result = run_analysis(traffic(), search(), pages(), queries())
    assert result.current_dates == [day(i) for i in range(CURRENT_DAYS)]
    assert result.baseline_dates == [day(i) for i in range(CURRENT_DAYS, CURRENT_DAYS + 14)]


def test_run_analysis_query_losses_use_page_windows():
    result = run_analysis(traffic(), search(), pages(), queries(current_clicks=10))
    (top,) = result.top_losing_queries
    assert top.query == "clinic near me"
    assert top.click_loss == 40 * 14 - 10 * CURRENT_DAYS


def test_run_analysis_is_idempotent_and_pure():
    t, s = traffic(), search()
    p = list(reversed(pages(current_blog_clicks=0, services_clicks=10)))
    q = queries()
    snapshot = (list(t), list(s), list(p), list(q))

    first = run_analysis(t, s, p, q)
    second = run_analysis(t, s, p, q)

    assert first == second
    assert (t, s, p, q) == snapshot


def test_run_analysis_input_order_does_not_matter():
    args = (traffic(0.4), search(), pages(current_blog_clicks=0, services_clicks=10), queries())
    forward = run_analysis(*args)
    backward = run_analysis(*(list(reversed(a)) for a in args))
    assert forward == backward


# ============================================================================
# derive_anomalies()
# ============================================================================


def test_anomalies_for_visibility_loss():
    result = run_analysis(
        traffic(), search(clicks_factor=0.4, impressions_factor=0.4), pages(), queries()
    )
    anomalies = derive_anomalies(result, END)
    assert [(a.anomaly_type, a.metric) for a in anomalies] == [
        (AnomalyType.IMPRESSIONS_DROP, "impressions"),
        (AnomalyType.TRAFFIC_DROP, "clicks"),
    ]
    impressions = anomalies[0]
    assert impressions.start_date == END
    assert impressions.baseline_value == result.deltas.search.impressions.baseline_sum
    assert impressions.observed_value == result.deltas.search.impressions.current_sum
    assert impressions.z_score == result.deltas.search.impressions.z_score


def test_anomalies_for_tracking_gap():
    result = run_analysis(traffic(0.4), search(), pages(), queries())
    anomalies = derive_anomalies(result, END)
    assert [a.anomaly_type for a in anomalies] == [
        AnomalyType.TRAFFIC_DROP,
        AnomalyType.TRACKING_GAP,
    ]
    assert all(a.scope == {"source": "web_traffic"} for a in anomalies)


def test_anomalies_for_cluster_drop():
    result = run_analysis(
        traffic(), search(), pages(current_blog_clicks=0, services_clicks=10), queries()
    )
    (anomaly,) = derive_anomalies(result, END)
    assert anomaly.anomaly_type == AnomalyType.PAGE_CLUSTER_DROP
    assert anomaly.scope["page_cluster"] == "/blog/*"
    assert anomaly.percent_delta == pytest.approx(-100.0)
    assert anomaly.z_score is None


def test_no_anomalies_when_stable():
    result = run_analysis(traffic(), search(), pages(), queries())
    assert derive_anomalies(result, END) == []
