"""
content_services.retry -- Whole-transaction retry wrapper.

Responsibility:
    Re-runs an atomic operation when it fails with a transient conflict:
    a ContentCoreError flagged ``retryable`` (version race, stage row
    conflict) or a database ``OperationalError`` (deadlock, lock
    timeout, SQLite busy).  Each attempt runs in a fresh transaction and
    re-reads current state; the state machine itself never retries.

Architecture position:
    Services -- orchestration support.  Wraps calls built by
    ContentWorkflowCore.

Invariants enforced:
    - Bounded: at most ``max_attempts`` executions per call.
    - Definitive failures (validation, state, not-found, authorization)
      propagate on the first attempt.

Failure modes:
    - The last retryable error propagates unchanged once attempts are
      exhausted.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import OperationalError

from content_kernel.exceptions import ContentCoreError
from content_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """True for transient conflicts worth another transaction."""
    if isinstance(exc, ContentCoreError):
        return exc.retryable
    return isinstance(exc, OperationalError)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to run an operation and how long to back off."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Sleep before attempt ``attempt + 1`` (attempts are 1-based)."""
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))


def run_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or fails definitively."""
    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.max_attempts:
                if is_retryable(exc):
                    logger.warning(
                        "retry_exhausted",
                        extra={
                            "operation_name": operation_name,
                            "attempts": attempt,
                            "error_type": type(exc).__name__,
                        },
                    )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "retry_attempt",
                extra={
                    "operation_name": operation_name,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                    "delay_seconds": delay,
                },
            )
            if delay > 0:
                sleep(delay)
            attempt += 1
