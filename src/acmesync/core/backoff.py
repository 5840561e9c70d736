"""Retry delay helpers."""

from __future__ import annotations

import random


def exponential_delay(attempt: int, base: float, cap: float) -> float:
    """Return ``min(base * 2**attempt, cap)`` without jitter."""
    if attempt < 0:
        attempt = 0
    # 2**64 is far past any sane cap; avoid building huge ints.
    return min(base * (2 ** min(attempt, 64)), cap)


def full_jitter(
    attempt: int,
    base: float,
    cap: float,
    *,
    rng: random.Random | None = None,
) -> float:
    """Exponential backoff with full jitter.

    The delay is drawn uniformly from ``[0, min(base * 2**attempt, cap)]``
    so that requests failing together do not retry together.
    """
    upper = exponential_delay(attempt, base, cap)
    return (rng or random).uniform(0, upper)
