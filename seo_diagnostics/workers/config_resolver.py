"""Per-run resolution of worker endpoints and credentials.

A worker's base URL and API key live in a secret store under
``"<worker_key>:<site_id>"`` (site-scoped) or ``"<worker_key>"`` (global). The
secret value is a JSON object, or a plain string taken as the API key alone.

Resolution never raises and is never cached: credentials can rotate between
runs, and a missing or partial secret is reported as an invalid config with the
exact missing fields so the orchestrator can skip the worker.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..config.models import loads_json
from ..utils.correlation import get_run_id
from . import WorkerSpec, get_worker

logger = logging.getLogger(__name__)

BASE_URL_FIELD = "base_url"
API_KEY_FIELD = "api_key"


class SecretStore(Protocol):
    """Read-only secret lookup by name."""

    async def get_secret(self, name: str) -> Optional[str]:
        """Return the secret value, or None when absent."""
        raise NotImplementedError


class StaticSecretStore:
    """Secret store over a fixed mapping (tests and local runs)."""

    def __init__(self, secrets: Mapping[str, str]) -> None:
        self._secrets = dict(secrets)

    async def get_secret(self, name: str) -> Optional[str]:
        return self._secrets.get(name)


class EnvSecretStore:
    """Secret store over environment variables.

    A secret name maps to ``<prefix><NAME>`` where ``NAME`` is the secret name
    upper-cased with every non-alphanumeric character replaced by ``_``
    (``serp_intel:site-1`` -> ``SEO_WORKER_SECRET_SERP_INTEL_SITE_1``).
    """

    def __init__(self, prefix: str = "SEO_WORKER_SECRET_", environ: Optional[Mapping[str, str]] = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def env_var_for(self, name: str) -> str:
        return self._prefix + re.sub(r"[^0-9A-Za-z]", "_", name).upper()

    async def get_secret(self, name: str) -> Optional[str]:
        return self._environ.get(self.env_var_for(name)) or None


def api_key_fingerprint(api_key: Optional[str]) -> Optional[str]:
    """Short SHA-256 prefix of an API key, safe to log."""
    if not api_key:
        return None
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:8]


@dataclass(frozen=True)
class WorkerConfig:
    """Resolved endpoint and credentials for one worker.

    Attributes
    ----------
    worker_key: str
        Worker identity.
    base_url: Optional[str]
        Base URL without trailing slashes.
    api_key: Optional[str]
        API key sent as ``x-api-key`` and bearer token.
    required_outputs: Tuple[str, ...]
        Expected ``data`` keys (secret override, else the worker spec).
    valid: bool
        True only when both base URL and API key are present.
    missing_fields: Tuple[str, ...]
        Exactly the absent fields among ``base_url`` and ``api_key``.
    secret_name: Optional[str]
        Name of the secret the values came from.
    raw_value_type: str
        ``"json"``, ``"string"`` or ``"null"``.
    parse_error: Optional[str]
        JSON decoding problem for secrets that looked like JSON.
    """

    worker_key: str
    base_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    required_outputs: Tuple[str, ...] = ()
    valid: bool = False
    missing_fields: Tuple[str, ...] = ()
    secret_name: Optional[str] = None
    raw_value_type: str = "null"
    parse_error: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        """Human-readable reason the config is invalid, or None."""
        if self.valid:
            return None
        if self.parse_error:
            return f"Secret {self.secret_name} is not valid JSON: {self.parse_error}"
        if self.secret_name is None:
            return f"No secret configured for {self.worker_key}"
        return "Missing fields: " + ", ".join(self.missing_fields)


def _first_str(blob: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = blob.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class WorkerConfigResolver:
    """Resolve ``WorkerConfig`` objects from a secret store.

    Parameters
    ----------
    secret_store: SecretStore
        Where worker secrets are read from.
    """

    def __init__(self, secret_store: SecretStore) -> None:
        self._secret_store = secret_store

    async def _lookup(self, worker_key: str, site_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        names = [f"{worker_key}:{site_id}"] if site_id else []
        names.append(worker_key)
        for name in names:
            try:
                value = await self._secret_store.get_secret(name)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.warning(
                    "worker_config.secret_lookup_failed",
                    extra={"run_id": get_run_id(), "secret_name": name, "error": str(exc)},
                )
                continue
            if value:
                return name, value
        return None, None

    async def resolve(self, worker_key: str, site_id: Optional[str] = None) -> WorkerConfig:
        """Resolve the config for ``worker_key`` scoped to ``site_id``.

        Never raises; an absent or incomplete secret yields ``valid=False``
        with ``missing_fields`` naming the absent keys.
        """
        try:
            spec: Optional[WorkerSpec] = get_worker(worker_key)
        except KeyError:
            spec = None
        default_outputs = spec.required_outputs if spec else ()

        secret_name, raw = await self._lookup(worker_key, site_id)
        base_url: Optional[str] = None
        api_key: Optional[str] = None
        required_outputs: Tuple[str, ...] = tuple(default_outputs)
        raw_value_type = "null"
        parse_error: Optional[str] = None

        if raw is not None:
            text = raw.strip()
            if text.startswith("{"):
                try:
                    blob = loads_json(text.encode("utf-8"))
                except ValueError as exc:
                    raw_value_type = "string"
                    parse_error = str(exc)
                else:
                    raw_value_type = "json"
                    base_url = _first_str(blob, "base_url", "baseUrl")
                    api_key = _first_str(blob, "api_key", "apiKey")
                    outputs = blob.get("required_outputs", blob.get("requiredOutputs"))
                    if isinstance(outputs, list):
                        required_outputs = tuple(str(o) for o in outputs)
            else:
                raw_value_type = "string"
                api_key = text or None

        if base_url:
            base_url = base_url.rstrip("/") or None

        missing: List[str] = []
        if not base_url:
            missing.append(BASE_URL_FIELD)
        if not api_key:
            missing.append(API_KEY_FIELD)

        config = WorkerConfig(
            worker_key=worker_key,
            base_url=base_url,
            api_key=api_key,
            required_outputs=required_outputs,
            valid=not missing,
            missing_fields=tuple(missing),
            secret_name=secret_name,
            raw_value_type=raw_value_type,
            parse_error=parse_error,
        )
        logger.info(
            "worker_config.resolved",
            extra={
                "run_id": get_run_id(),
                "worker_key": worker_key,
                "site_id": site_id,
                "secret_name": secret_name,
                "valid": config.valid,
                "missing_fields": list(config.missing_fields),
                "base_url": base_url,
                "api_key_fingerprint": api_key_fingerprint(api_key),
            },
        )
        return config
