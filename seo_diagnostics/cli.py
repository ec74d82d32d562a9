"""Command-line interface for one-off diagnostic passes.

Usage
-----
    seo-diagnostics workers --config app.json --site-id site-1 --domain example.com
    seo-diagnostics analyze --input signals.json [--config app.json]

``workers`` reads worker secrets from environment variables (see
``EnvSecretStore``). ``analyze`` reads a JSON object holding the four signal
arrays ``traffic``, ``search_daily``, ``pages`` and ``queries``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .analysis.engine import run_analysis
from .analysis.models import PageRecord, QueryRecord, SearchPerformanceRecord, WebTrafficRecord
from .config.models import AppConfig, EnvSettings, loads_json
from .observability import setup_logging
from .workers import apply_worker_config
from .workers.config_resolver import EnvSecretStore, WorkerConfigResolver
from .workers.orchestrator import WorkerOrchestrator

SIGNAL_ARRAYS = {
    "traffic": WebTrafficRecord,
    "search_daily": SearchPerformanceRecord,
    "pages": PageRecord,
    "queries": QueryRecord,
}


def _load_config(path: Optional[str], env: EnvSettings) -> AppConfig:
    """Load app config from ``path`` or the environment; defaults otherwise."""
    config_path = path or env.config_path
    if not config_path:
        return AppConfig()
    return AppConfig.load(Path(config_path))


async def _run_workers(args: argparse.Namespace, cfg: AppConfig, env: EnvSettings) -> str:
    apply_worker_config(cfg.workers)
    resolver = WorkerConfigResolver(EnvSecretStore(env.secret_env_prefix))
    orchestrator = WorkerOrchestrator(resolver, timeout_seconds=cfg.worker_timeout_seconds)
    try:
        result = await orchestrator.run(args.run_id, args.site_id, args.domain)
    finally:
        await orchestrator.aclose()
    return result.model_dump_json(indent=2)


def _analyze(input_path: Path, cfg: AppConfig) -> str:
    raw: Dict[str, Any] = loads_json(input_path.read_bytes())
    if not isinstance(raw, dict):
        raise ValueError("input must be a JSON object")
    arrays: Dict[str, List[Any]] = {
        name: [model.model_validate(item) for item in raw.get(name) or []]
        for name, model in SIGNAL_ARRAYS.items()
    }
    result = run_analysis(
        arrays["traffic"],
        arrays["search_daily"],
        arrays["pages"],
        arrays["queries"],
        cfg.analysis,
    )
    return result.model_dump_json(indent=2)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to JSON app config")
    common.add_argument(
        "--log-level",
        dest="log_level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging level (overrides environment)",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser = argparse.ArgumentParser(
        prog="seo-diagnostics", description="Site diagnostics CLI"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    workers = sub.add_parser("workers", parents=[common], help="Dispatch one run to every worker")
    workers.add_argument("--site-id", required=True, help="Site identifier")
    workers.add_argument("--domain", required=True, help="Bare domain, e.g. example.com")
    workers.add_argument(
        "--run-id",
        default=None,
        help="Run identifier (default: generated)",
    )

    analyze = sub.add_parser("analyze", parents=[common], help="Classify a drop from a signals file")
    analyze.add_argument("--input", required=True, help="Path to signals JSON")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint; prints the result JSON to stdout."""
    parser = build_parser()
    args = parser.parse_args(argv)

    env = EnvSettings()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env.log_level.upper())
    setup_logging(effective_level)

    try:
        cfg = _load_config(args.config, env)
    except (OSError, ValueError, ValidationError) as exc:
        parser.error(f"invalid config: {exc}")

    if args.command == "workers":
        args.run_id = args.run_id or f"run_{uuid.uuid4().hex[:12]}"
        output = asyncio.run(_run_workers(args, cfg, env))
    else:
        try:
            output = _analyze(Path(args.input), cfg)
        except (OSError, ValueError, ValidationError) as exc:
            parser.error(f"invalid input: {exc}")
    sys.stdout.write(output + "\n")


if __name__ == "__main__":
    main()
