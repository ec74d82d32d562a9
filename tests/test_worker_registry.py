"""Test worker registration and file-config overrides."""

from __future__ import annotations

import pytest

from seo_diagnostics.config.models import WorkerSpecConfig
from seo_diagnostics.workers import (
    DEFAULT_WORKERS,
    WorkerSpec,
    all_workers,
    apply_worker_config,
    get_worker,
    register_worker,
)


def test_default_workers_registered():
    keys = [w.key for w in all_workers()]
    assert keys == [w.key for w in DEFAULT_WORKERS]
    assert get_worker("crawl_render").run_path == "/api/run"
    assert get_worker("backlink_authority").run_path == "/backlinks/authority/refresh"
    assert get_worker("serp_intel").required_outputs == ("keywords",)


def test_get_unknown_worker_raises():
    with pytest.raises(KeyError):
        get_worker("does_not_exist")


def test_register_replaces_by_key():
    register_worker(WorkerSpec("serp_intel", "SERP v2", "/v2/run"))
    assert get_worker("serp_intel").run_path == "/v2/run"
    assert len(all_workers()) == len(DEFAULT_WORKERS)


def test_apply_worker_config():
    result = apply_worker_config(
        {
            "serp_intel": WorkerSpecConfig(run_path="/v2/run", required_outputs=["rankings"]),
            "notifications": WorkerSpecConfig(enabled=False),
            "schema_audit": WorkerSpecConfig(display_name="Schema Audit"),
        }
    )
    assert result == {
        "updated": ["serp_intel"],
        "added": ["schema_audit"],
        "disabled": ["notifications"],
    }
    serp = get_worker("serp_intel")
    assert serp.run_path == "/v2/run"
    assert serp.required_outputs == ("rankings",)
    assert serp.display_name == "SERP & Keyword Intelligence"
    added = get_worker("schema_audit")
    assert added.run_path == "/run"
    assert added.display_name == "Schema Audit"
    with pytest.raises(KeyError):
        get_worker("notifications")


def test_registry_reset_between_tests():
    """Test the autouse fixture restored the defaults after the previous test."""
    assert get_worker("notifications").key == "notifications"
