"""Fixed-delay retry combinator for first-party connector calls.

Worker calls made by the orchestrator are deliberately not retried; a failed
worker is re-attempted by the next scheduled run instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .correlation import get_run_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed delay between them."""

    max_attempts: int = 3
    delay_ms: int = 2000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
) -> T:
    """Run ``operation`` until it succeeds or attempts are exhausted.

    Parameters
    ----------
    operation : Callable[[], Awaitable[T]]
        Zero-argument coroutine factory. Called once per attempt.
    policy : RetryPolicy
        Attempt bound and fixed delay.
    label : str
        Human-readable operation name used in logs and in the final error.

    Returns
    -------
    T
        Result of the first successful attempt.

    Raises
    ------
    Exception
        The last exception raised by ``operation``. It carries a PEP 678 note
        naming ``label`` and the attempt count, plus ``retry_label`` and
        ``retry_attempts`` attributes.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            last_exc = exc
            if attempt < policy.max_attempts:
                logger.warning(
                    "retry.attempt_failed",
                    extra={
                        "run_id": get_run_id(),
                        "label": label,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "error": str(exc),
                    },
                )
                await asyncio.sleep(policy.delay_ms / 1000.0)

    if last_exc is None:
        raise RuntimeError(f"{label} exhausted retries without exception")
    logger.error(
        "retry.exhausted",
        extra={
            "run_id": get_run_id(),
            "label": label,
            "attempts": policy.max_attempts,
            "error": str(last_exc),
        },
    )
    last_exc.add_note(f"{label} failed after {policy.max_attempts} attempt(s)")
    setattr(last_exc, "retry_label", label)
    setattr(last_exc, "retry_attempts", policy.max_attempts)
    raise last_exc
