"""Exponential backoff for poll-level failures."""

from __future__ import annotations

import random
from collections.abc import Callable

JITTER_RATIO = 0.2


def backoff_delay(
    attempt: int,
    base: float,
    maximum: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retrying after ``attempt`` consecutive failures.

    The delay doubles per failure starting from ``base`` and never exceeds
    ``maximum``. Up to ``JITTER_RATIO`` of it is shaved off at random.
    """
    if attempt <= 0:
        return base
    delay = min(maximum, base * (2 ** min(attempt - 1, 32)))
    return delay * (1.0 - JITTER_RATIO * rng())
