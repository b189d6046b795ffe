from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retries(
    fn: Callable[[], T],
    *,
    attempts: int,
    retry_on: tuple[type[BaseException], ...],
    delay_seconds: float = 0.1,
    description: str = "operation",
) -> T:
    """Run ``fn`` up to ``attempts`` times with linear backoff between tries.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once attempts run out.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            logger.warning("%s failed (attempt %d/%d): %s", description, attempt, attempts, exc)
            if delay_seconds > 0:
                time.sleep(delay_seconds * attempt)
    raise AssertionError("unreachable")
