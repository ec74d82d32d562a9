"""
Window statistics for current-vs-baseline comparisons.

All calculations are deterministic. The z-score uses the population standard
deviation of the baseline per-day sample and is forced to 0 for degenerate
baselines so that short or flat histories never raise a drop on their own.
"""

import math
import statistics
from typing import Sequence

from .models import MetricDelta


def compute_z_score(baseline_values: Sequence[float], current_value: float) -> float:
    """
    Compute ``(current - mean) / stddev`` against a baseline sample.

    Parameters
    ----------
    baseline_values : Sequence[float]
        Per-day baseline observations.
    current_value : float
        Value being evaluated (a current-window per-day mean).

    Returns
    -------
    float
        The z-score, or 0.0 when the baseline has fewer than 2 points or zero
        variance.

    Examples
    --------
    >>> round(compute_z_score([10, 12, 11, 9, 13], 5), 3)
    -4.243
    >>> compute_z_score([7, 7, 7], 1)
    0.0
    """
    if len(baseline_values) < 2:
        return 0.0
    mean_val = statistics.fmean(baseline_values)
    std_dev = statistics.pstdev(baseline_values, mu=mean_val)
    if std_dev == 0 or not math.isfinite(std_dev):
        return 0.0
    return (current_value - mean_val) / std_dev


def percent_change(current: float, baseline: float) -> float:
    """Percent change from ``baseline`` to ``current``; 0.0 when baseline <= 0."""
    if baseline <= 0:
        return 0.0
    return (current - baseline) / baseline * 100.0


def compute_metric_delta(
    current_values: Sequence[float], baseline_values: Sequence[float]
) -> MetricDelta:
    """
    Summarize one metric over the current and baseline windows.

    Parameters
    ----------
    current_values : Sequence[float]
        Per-day values in the current window.
    baseline_values : Sequence[float]
        Per-day values in the baseline window.

    Returns
    -------
    MetricDelta
        Sums, absolute and percent delta, and the z-score of the current
        per-day mean against the baseline sample. An empty current window
        yields a percent delta and z-score of 0.
    """
    current_sum = float(sum(current_values))
    baseline_sum = float(sum(baseline_values))
    if not current_values:
        return MetricDelta(
            current_sum=0.0,
            baseline_sum=baseline_sum,
            absolute_delta=-baseline_sum,
            percent_delta=0.0,
            z_score=0.0,
        )
    current_mean = current_sum / len(current_values)
    return MetricDelta(
        current_sum=current_sum,
        baseline_sum=baseline_sum,
        absolute_delta=current_sum - baseline_sum,
        percent_delta=percent_change(current_sum, baseline_sum),
        z_score=compute_z_score(baseline_values, current_mean),
    )


def window_mean(values: Sequence[float]) -> float:
    """Arithmetic mean, or 0.0 for an empty window."""
    if not values:
        return 0.0
    return statistics.fmean(values)
