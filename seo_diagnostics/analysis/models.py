"""Typed records and results for the drop classification engine.

Signal records are produced by the first-party connectors and read back by the
pipeline. Result models are frozen: an ``AnalysisResult`` is computed fresh per
run and handed downstream read-only.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebTrafficRecord(BaseModel):
    """One web-traffic row for a date (optionally per landing page/channel).

    Attributes
    ----------
    date: dt.date
        Calendar day of the observation.
    sessions: int
        Sessions recorded for the day (and dimension, if any).
    users: int
        Active users recorded for the day.
    landing_page: Optional[str]
        Landing page path when the row is broken down by page.
    channel: Optional[str]
        Default channel group (e.g., "Organic Search").
    """

    date: dt.date
    sessions: int = Field(0, ge=0)
    users: int = Field(0, ge=0)
    landing_page: Optional[str] = None
    channel: Optional[str] = None


class SearchPerformanceRecord(BaseModel):
    """One search-performance row for a date (optionally per query/page).

    Attributes
    ----------
    date: dt.date
        Calendar day of the observation.
    clicks: int
        Organic clicks.
    impressions: int
        Organic impressions.
    ctr: float
        Click-through rate as a fraction (0.0-1.0).
    position: float
        Average ranking position (1 is best).
    query: Optional[str]
        Search query when the row is broken down by query.
    page: Optional[str]
        Full page URL when the row is broken down by page.
    """

    date: dt.date
    clicks: int = Field(0, ge=0)
    impressions: int = Field(0, ge=0)
    ctr: float = 0.0
    position: float = 0.0
    query: Optional[str] = None
    page: Optional[str] = None


class PageRecord(BaseModel):
    """Search-performance clicks for a single page path on one day."""

    date: dt.date
    page_path: str
    clicks: int = Field(0, ge=0)
    impressions: int = Field(0, ge=0)
    ctr: float = 0.0
    position: float = 0.0


class QueryRecord(BaseModel):
    """Search-performance clicks for a single query on one day."""

    date: dt.date
    query: str
    clicks: int = Field(0, ge=0)
    impressions: int = Field(0, ge=0)


class MetricDelta(BaseModel):
    """Current-vs-baseline comparison for one summed metric.

    ``percent_delta`` is 0 when the baseline sum is 0. ``z_score`` compares the
    current per-day mean against the baseline per-day sample.
    """

    model_config = ConfigDict(frozen=True)

    current_sum: float
    baseline_sum: float
    absolute_delta: float
    percent_delta: float
    z_score: float


class TrafficDeltas(BaseModel):
    """Deltas and drop flag for the web-traffic signal."""

    model_config = ConfigDict(frozen=True)

    sessions: MetricDelta
    users: MetricDelta
    sessions_drop_flag: bool


class SearchDeltas(BaseModel):
    """Deltas and drop flags for the search-performance signal.

    ``ctr_delta`` and ``position_delta`` are percent changes of the per-day
    means. CTR carries a percent-only drop flag; position carries none.
    """

    model_config = ConfigDict(frozen=True)

    clicks: MetricDelta
    impressions: MetricDelta
    current_ctr: float
    baseline_ctr: float
    ctr_delta: float
    current_position: float
    baseline_position: float
    position_delta: float
    clicks_drop_flag: bool
    impressions_drop_flag: bool
    ctr_drop_flag: bool


class Deltas(BaseModel):
    """Combined deltas for both first-party signals."""

    model_config = ConfigDict(frozen=True)

    traffic: TrafficDeltas
    search: SearchDeltas


class ClusterLoss(BaseModel):
    """Click loss attributed to one page cluster."""

    model_config = ConfigDict(frozen=True)

    cluster: str
    baseline_clicks: float
    current_clicks: float
    click_loss: float
    loss_share: float


class LosingPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: str
    click_loss: float
    cluster: str


class LosingQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    click_loss: float


class Classification(str, Enum):
    """Closed set of primary root-cause categories."""

    VISIBILITY_LOSS = "VISIBILITY_LOSS"
    CTR_LOSS = "CTR_LOSS"
    PAGE_CLUSTER_REGRESSION = "PAGE_CLUSTER_REGRESSION"
    TRACKING_OR_ATTRIBUTION_GAP = "TRACKING_OR_ATTRIBUTION_GAP"
    INCONCLUSIVE = "INCONCLUSIVE"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    classification: Classification
    confidence: Confidence


class AnomalyFlags(BaseModel):
    """Flat view of every drop flag.

    ``tracking_gap_flag`` is computed independently of the classification so
    consumers see it even when an earlier rule did not fire.
    """

    model_config = ConfigDict(frozen=True)

    impressions_drop_flag: bool
    clicks_drop_flag: bool
    ctr_drop_flag: bool
    sessions_drop_flag: bool
    tracking_gap_flag: bool


class AnalysisResult(BaseModel):
    """Output of one analysis pass.

    Attributes
    ----------
    deltas: Deltas
        Current-vs-baseline deltas for both signals.
    classification: Classification
        Primary root-cause category.
    confidence: Confidence
        Confidence attached to the classification.
    cluster_losses: List[ClusterLoss]
        Clusters with positive click loss, sorted by loss descending.
    top_losing_pages: List[LosingPage]
        Pages with the largest click loss.
    top_losing_queries: List[LosingQuery]
        Queries with the largest click loss.
    anomaly_flags: AnomalyFlags
        Flat record of every drop flag.
    current_dates: List[dt.date]
        Dates of the page-level current window, most recent first.
    baseline_dates: List[dt.date]
        Dates of the page-level baseline window, most recent first.
    """

    model_config = ConfigDict(frozen=True)

    deltas: Deltas
    classification: Classification
    confidence: Confidence
    cluster_losses: List[ClusterLoss] = Field(default_factory=list)
    top_losing_pages: List[LosingPage] = Field(default_factory=list)
    top_losing_queries: List[LosingQuery] = Field(default_factory=list)
    anomaly_flags: AnomalyFlags
    current_dates: List[dt.date] = Field(default_factory=list)
    baseline_dates: List[dt.date] = Field(default_factory=list)


class AnomalyType(str, Enum):
    TRAFFIC_DROP = "traffic_drop"
    IMPRESSIONS_DROP = "impressions_drop"
    CTR_DROP = "ctr_drop"
    PAGE_CLUSTER_DROP = "page_cluster_drop"
    TRACKING_GAP = "tracking_gap"


class Anomaly(BaseModel):
    """Persistable anomaly record derived from an ``AnalysisResult``.

    Attributes
    ----------
    anomaly_type: AnomalyType
        Kind of anomaly.
    metric: str
        Metric the anomaly was observed on (e.g., "clicks", "sessions").
    start_date: dt.date
        Date the anomaly is reported for.
    baseline_value: float
        Baseline aggregate of the metric.
    observed_value: float
        Current aggregate of the metric.
    percent_delta: float
        Percent change from baseline to current.
    z_score: Optional[float]
        Z-score when the metric has one.
    scope: Dict[str, Any]
        Where the anomaly applies (e.g., ``{"page_cluster": "/blog/*"}``).
    """

    model_config = ConfigDict(frozen=True)

    anomaly_type: AnomalyType
    metric: str
    start_date: dt.date
    baseline_value: float
    observed_value: float
    percent_delta: float
    z_score: Optional[float] = None
    scope: Dict[str, Any] = Field(default_factory=dict)
