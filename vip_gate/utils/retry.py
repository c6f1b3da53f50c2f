"""Bounded exponential backoff for idempotent calls."""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from vip_gate.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based), doubling and capped."""
    return min(base_delay * (2 ** attempt), max_delay)


def retry_call(
    func: Callable[[], T],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    operation: str,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` is exhausted.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised.

    Args:
        func: Zero-argument callable
        attempts: Total number of calls allowed (>= 1)
        base_delay: First backoff delay in seconds
        max_delay: Backoff cap in seconds
        retry_on: Exception types considered transient
        operation: Name used in log events
        sleep: Sleep function (defaults to time.sleep)
    """
    sleep = sleep or time.sleep
    attempt = 0
    while True:
        try:
            return func()
        except retry_on as e:
            attempt += 1
            if attempt >= attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            delay = compute_backoff(attempt - 1, base_delay, max_delay)
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay_seconds=delay,
                error=str(e),
            )
            sleep(delay)
