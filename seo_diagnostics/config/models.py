"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. JSON parsing prefers `orjson` when available for speed, but
falls back to the Python standard library's `json` module so the loader keeps
working in minimal environments.
"""

from __future__ import annotations

import json as _json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

try:
    import orjson as _orjson_mod  # type: ignore[assignment]
except ImportError:  # pragma: no cover - optional dependency
    _orjson_mod = None  # type: ignore[assignment]
    _loads_orjson: Optional[Callable[[bytes], Any]] = None
else:

    def _loads_orjson(buf: bytes) -> Any:
        loader = getattr(_orjson_mod, "loads")  # type: ignore[assignment]
        return loader(buf)


from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def loads_json(raw: bytes) -> Any:
    """Parse JSON bytes with `orjson` when installed, else stdlib `json`."""
    if _loads_orjson is not None:
        return _loads_orjson(raw)
    return _json.loads(raw.decode("utf-8"))


class WorkerSpecConfig(BaseModel):
    """Configuration override for one diagnostic worker.

    Attributes
    ----------
    run_path: Optional[str]
        Path appended to the worker base URL for the run call.
    display_name: Optional[str]
        Human-readable worker name.
    required_outputs: Optional[List[str]]
        Keys the worker is expected to return under its ``data`` object.
    enabled: bool
        Disabled workers are removed from the registry entirely.
    """

    run_path: Optional[str] = Field(None, description="Run endpoint path")
    display_name: Optional[str] = None
    required_outputs: Optional[List[str]] = None
    enabled: bool = True


class RateLimitSettings(BaseModel):
    """Token bucket shared by first-party connector calls."""

    max_tokens: int = Field(10, ge=1)
    refill_interval_seconds: float = Field(1.0, gt=0)


class RetrySettings(BaseModel):
    """Fixed-delay retry policy for first-party connector calls."""

    max_attempts: int = Field(3, ge=1)
    delay_ms: int = Field(2000, ge=0)


class AnalysisSettings(BaseModel):
    """Window sizes and thresholds for the drop classification engine.

    Attributes
    ----------
    current_window_days: int
        Number of most recent days evaluated.
    baseline_window_days: int
        Number of days immediately preceding the current window used as the
        statistical reference.
    drop_pct_threshold: float
        Percent change at or below which a metric counts as dropped
        (negative, e.g. -30.0).
    z_score_threshold: float
        Z-score at or below which a drop is significant (negative).
    cluster_loss_share_threshold: float
        Loss share of the largest cluster at or above which the drop is
        attributed to a page cluster.
    top_losers_limit: int
        Maximum number of pages/queries reported as top losers.
    lookback_days: int
        Days of stored signal read for one analysis.
    """

    current_window_days: int = Field(3, ge=1)
    baseline_window_days: int = Field(14, ge=1)
    drop_pct_threshold: float = Field(-30.0, le=0)
    z_score_threshold: float = Field(-2.0, le=0)
    cluster_loss_share_threshold: float = Field(0.6, gt=0, le=1)
    top_losers_limit: int = Field(10, ge=1)
    lookback_days: int = Field(30, ge=1)

    @model_validator(mode="after")
    def _lookback_covers_windows(self) -> "AnalysisSettings":
        needed = self.current_window_days + self.baseline_window_days
        if self.lookback_days < needed:
            raise ValueError(
                f"lookback_days ({self.lookback_days}) must cover current + "
                f"baseline windows ({needed})"
            )
        return self


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes
    ----------
    workers: Dict[str, WorkerSpecConfig]
        Per-worker overrides keyed by worker key. Unknown keys register new
        workers.
    analysis: AnalysisSettings
        Window sizes and thresholds.
    rate_limit: RateLimitSettings
        First-party API admission rate.
    retry: RetrySettings
        First-party API retry policy.
    worker_timeout_seconds: float
        Per-call timeout for every worker dispatch.
    """

    workers: Dict[str, WorkerSpecConfig] = Field(default_factory=dict)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    worker_timeout_seconds: float = Field(30.0, gt=0)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        return AppConfig.model_validate(loads_json(path.read_bytes()))


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    config_path: Optional[str]
        Path to the JSON app config used when ``--config`` is not given.
    secret_env_prefix: str
        Prefix of environment variables holding worker secrets.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="SEO_DIAGNOSTICS_", extra="ignore"
    )

    log_level: str = Field("INFO")
    config_path: Optional[str] = None
    secret_env_prefix: str = Field("SEO_WORKER_SECRET_")
