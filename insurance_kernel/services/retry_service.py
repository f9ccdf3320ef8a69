"""
Bounded retry for accounting-platform calls.

Transient failures (``TransientGatewayError``, ``ConnectionError``,
``TimeoutError``) are retried up to ``max_attempts`` times with
exponential backoff plus uniform random jitter, capped at ``max_delay``.
Any other exception propagates on the first attempt.

The wait goes through a ``threading.Event`` when one is given, so a
cancellation request interrupts the backoff and raises
``ImportCancelledError`` instead of sleeping it out.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from insurance_kernel.exceptions import ImportCancelledError, TransientGatewayError
from insurance_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientGatewayError,
    ConnectionError,
    TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("Retry delays must not be negative")

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        backoff = self.base_delay * (2 ** (attempt - 1))
        spread = (rng or random).uniform(0, self.jitter) if self.jitter else 0.0
        return min(self.max_delay, backoff + spread)


def is_transient(error: BaseException) -> bool:
    return isinstance(error, TRANSIENT_ERRORS)


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    cancel_event: threading.Event | None = None,
) -> T:
    """Run ``fn`` under ``policy``.

    Raises:
        The last transient error once attempts are exhausted, any
        non-transient error immediately, or ``ImportCancelledError`` when
        ``cancel_event`` is set during a backoff wait.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except TRANSIENT_ERRORS as exc:
            if attempt >= policy.max_attempts:
                logger.error(
                    "gateway_retries_exhausted",
                    extra={"operation": operation, "attempts": attempt, "error": str(exc)},
                )
                raise
            delay = policy.delay_for(attempt, rng)
            logger.warning(
                "gateway_retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "delay": round(delay, 3),
                    "error": str(exc),
                },
            )
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise ImportCancelledError(f"retry of {operation}") from exc
            else:
                sleep(delay)
            attempt += 1
