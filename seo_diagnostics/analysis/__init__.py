"""Drop classification engine: windowed deltas, z-scores and loss ranking."""

from .engine import (
    classify_primary_issue,
    compute_cluster_losses,
    compute_deltas,
    compute_top_losing_pages,
    compute_top_losing_queries,
    derive_anomalies,
    run_analysis,
)
from .models import AnalysisResult, Classification, Confidence

__all__ = [
    "AnalysisResult",
    "Classification",
    "Confidence",
    "classify_primary_issue",
    "compute_cluster_losses",
    "compute_deltas",
    "compute_top_losing_pages",
    "compute_top_losing_queries",
    "derive_anomalies",
    "run_analysis",
]
