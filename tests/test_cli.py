"""Test the command-line entrypoint."""

from __future__ import annotations

import json

import pytest
from sample_signals import pages, queries, search, traffic

from seo_diagnostics.cli import build_parser, main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SEO_DIAGNOSTICS_CONFIG_PATH", raising=False)
    monkeypatch.setenv("SEO_DIAGNOSTICS_SECRET_ENV_PREFIX", "SEO_CLI_TEST_UNSET_")


def _dump(records):
    return [r.model_dump(mode="json") for r in records]


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_analyze_prints_result(tmp_path, capsys):
    path = tmp_path / "signals.json"
    path.write_text(
        json.dumps(
            {
                "traffic": _dump(traffic(0.4)),
                "search_daily": _dump(search()),
                "pages": _dump(pages()),
                "queries": _dump(queries()),
            }
        )
    )
    main(["analyze", "--input", str(path)])
    out = json.loads(capsys.readouterr().out)
    assert out["classification"] == "TRACKING_OR_ATTRIBUTION_GAP"
    assert out["confidence"] == "high"
    assert out["anomaly_flags"]["tracking_gap_flag"] is True


def test_analyze_uses_config_thresholds(tmp_path, capsys):
    signals = tmp_path / "signals.json"
    signals.write_text(
        json.dumps(
            {
                "traffic": _dump(traffic()),
                "search_daily": _dump(search()),
                "pages": _dump(pages()),
            }
        )
    )
    config = tmp_path / "app.json"
    config.write_text(json.dumps({"analysis": {"cluster_loss_share_threshold": 0.5}}))
    main(["analyze", "--input", str(signals), "--config", str(config)])
    out = json.loads(capsys.readouterr().out)
    assert out["classification"] == "PAGE_CLUSTER_REGRESSION"


def test_analyze_rejects_bad_input(tmp_path):
    path = tmp_path / "signals.json"
    path.write_text('{"traffic": [{"sessions": 3}]}')
    with pytest.raises(SystemExit) as exc_info:
        main(["analyze", "--input", str(path)])
    assert exc_info.value.code == 2


def test_invalid_config_exits(tmp_path):
    path = tmp_path / "signals.json"
    path.write_text("{}")
    with pytest.raises(SystemExit) as exc_info:
        main(["analyze", "--input", str(path), "--config", str(tmp_path / "missing.json")])
    assert exc_info.value.code == 2


def test_workers_without_secrets_skips_everything(tmp_path, capsys):
    config = tmp_path / "app.json"
    config.write_text(
        json.dumps(
            {
                "workers": {
                    "notifications": {"enabled": False},
                    "content_generator": {"enabled": False},
                }
            }
        )
    )
    main(
        [
            "workers",
            "--site-id",
            "site-1",
            "--domain",
            "example.com",
            "--run-id",
            "run-cli",
            "--config",
            str(config),
        ]
    )
    out = json.loads(capsys.readouterr().out)
    assert out["run_id"] == "run-cli"
    assert out["status"] == "failed"
    assert out["skipped_count"] == len(out["workers"]) == 7
    assert {w["error_code"] for w in out["workers"]} == {"NO_CONFIG"}
