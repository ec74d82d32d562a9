"""Result models for worker orchestration.

All results are frozen once produced: a ``WorkerCallResult`` per worker per
run, and one ``WorkerRunResult`` per run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkerStatus(str, Enum):
    """Terminal status of one worker call."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Aggregate status of a run.

    ``complete`` when every worker succeeded (or none were registered),
    ``partial`` when at least one did, ``failed`` otherwise.
    """

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER: Dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class WorkerCallResult(BaseModel):
    """Outcome of one worker call.

    Attributes
    ----------
    worker_key: str
        Worker identity.
    status: WorkerStatus
        Terminal status.
    duration_ms: int
        Wall time of the call; 0 for skipped workers.
    normalized_metrics: Dict[str, Any]
        Worker-specific metrics pulled from the payload; empty unless the
        call succeeded with a recognizable payload.
    summary: Optional[str]
        One-line human summary.
    error_code: Optional[str]
        ``NO_CONFIG``, ``TIMEOUT``, ``NETWORK_ERROR`` or ``HTTP_<status>``.
    error_detail: Optional[str]
        Error specifics (truncated response body, missing fields, ...).
    missing_outputs: List[str]
        Required outputs absent from a successful payload's ``data`` object.
    """

    model_config = ConfigDict(frozen=True)

    worker_key: str
    status: WorkerStatus
    duration_ms: int = 0
    normalized_metrics: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    error_code: Optional[str] = None
    error_detail: Optional[str] = None
    missing_outputs: List[str] = Field(default_factory=list)


class Suggestion(BaseModel):
    """Rule-based recommendation derived from worker metrics."""

    model_config = ConfigDict(frozen=True)

    suggestion_id: str
    run_id: str
    site_id: str
    suggestion_type: str
    title: str
    description: str
    severity: Severity
    category: str
    evidence: Dict[str, Any] = Field(default_factory=dict)
    actions: List[str] = Field(default_factory=list)
    impacted_keywords: List[str] = Field(default_factory=list)
    impacted_urls: List[str] = Field(default_factory=list)
    estimated_impact: str = "medium"
    estimated_effort: str = "moderate"
    assignee: str = "SEO"
    source_workers: List[str] = Field(default_factory=list)


class Insight(BaseModel):
    """Free-text rollup across worker results."""

    model_config = ConfigDict(frozen=True)

    insight_id: str
    run_id: str
    site_id: str
    title: str
    summary: str
    full_content: Optional[str] = None
    insight_type: str
    priority: int = 50


class WorkerRunResult(BaseModel):
    """Aggregated outcome of one orchestration run.

    ``failed_count`` includes timeouts. Skipped workers count neither as
    successes nor failures.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    site_id: str
    domain: str
    started_at: datetime
    finished_at: datetime
    workers: List[WorkerCallResult] = Field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    status: RunStatus
    suggestions: List[Suggestion] = Field(default_factory=list)
    insights: List[Insight] = Field(default_factory=list)
