"""Diagnostic worker registry.

Each worker is an independently deployed HTTP service. The registry records
how to call it (run path) and what its payload is expected to contain
(required outputs); credentials are resolved separately per run.

The registry is an in-memory mapping populated with the default worker set at
import time. ``apply_worker_config`` layers file configuration on top, and
``reset_workers`` restores the defaults (used by tests).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, List, Tuple

if TYPE_CHECKING:
    from ..config.models import WorkerSpecConfig

logger = logging.getLogger(__name__)

DEFAULT_RUN_PATH = "/run"


@dataclass(frozen=True)
class WorkerSpec:
    """Static description of one diagnostic worker.

    Attributes
    ----------
    key: str
        Worker identity; selects the metric extractor and secret names.
    display_name: str
        Human-readable name.
    run_path: str
        Path appended to the resolved base URL for the run call.
    required_outputs: Tuple[str, ...]
        Keys expected under the response ``data`` object.
    """

    key: str
    display_name: str
    run_path: str = DEFAULT_RUN_PATH
    required_outputs: Tuple[str, ...] = field(default_factory=tuple)


DEFAULT_WORKERS: Tuple[WorkerSpec, ...] = (
    WorkerSpec("competitive_snapshot", "Competitive Intelligence", "/run", ("competitors",)),
    WorkerSpec("serp_intel", "SERP & Keyword Intelligence", "/run", ("keywords",)),
    WorkerSpec("crawl_render", "Technical SEO", "/api/run", ("pages",)),
    WorkerSpec("core_web_vitals", "Core Web Vitals Monitor", "/run", ("vitals",)),
    WorkerSpec("content_generator", "Content Generator"),
    WorkerSpec("content_qa", "Content QA / Policy Validator"),
    WorkerSpec("content_decay", "Content Decay Monitor", "/run", ("pages",)),
    WorkerSpec(
        "backlink_authority",
        "Backlink & Authority Signals",
        "/backlinks/authority/refresh",
        ("domain_authority",),
    ),
    WorkerSpec("notifications", "Notifications Service"),
)

_registry: Dict[str, WorkerSpec] = {}


def register_worker(spec: WorkerSpec) -> None:
    """Register (or replace) a worker by its ``key``."""
    _registry[spec.key] = spec
    logger.debug("workers.register", extra={"worker_key": spec.key, "run_path": spec.run_path})


def get_worker(worker_key: str) -> WorkerSpec:
    """Retrieve a worker spec.

    Raises
    ------
    KeyError
        If no worker is registered under the given key.
    """
    return _registry[worker_key]


def all_workers() -> List[WorkerSpec]:
    """Registered workers in registration order."""
    return list(_registry.values())


def reset_workers() -> None:
    """Restore the default worker set, dropping any overrides."""
    _registry.clear()
    for spec in DEFAULT_WORKERS:
        register_worker(spec)


def apply_worker_config(overrides: Dict[str, "WorkerSpecConfig"]) -> Dict[str, List[str]]:
    """Apply per-worker file configuration to the registry.

    Behavior:
    - ``enabled: false`` removes the worker.
    - Other set fields replace the registered values.
    - Keys not yet registered are added, with the key as display name when
      none is given.

    Returns a dict with keys ``updated``, ``added`` and ``disabled`` for
    diagnostics and tests.
    """
    updated: List[str] = []
    added: List[str] = []
    disabled: List[str] = []
    for key, cfg in overrides.items():
        if not cfg.enabled:
            if _registry.pop(key, None) is not None:
                disabled.append(key)
            continue
        current = _registry.get(key)
        if current is None:
            current = WorkerSpec(key=key, display_name=cfg.display_name or key)
            added.append(key)
        else:
            updated.append(key)
        changes: Dict[str, object] = {}
        if cfg.run_path is not None:
            changes["run_path"] = cfg.run_path
        if cfg.display_name is not None:
            changes["display_name"] = cfg.display_name
        if cfg.required_outputs is not None:
            changes["required_outputs"] = tuple(cfg.required_outputs)
        _registry[key] = replace(current, **changes)
    logger.info(
        "workers.config_applied",
        extra={
            "updated": sorted(updated),
            "added": sorted(added),
            "disabled": sorted(disabled),
            "registered": list(_registry.keys()),
        },
    )
    return {"updated": sorted(updated), "added": sorted(added), "disabled": sorted(disabled)}


reset_workers()
