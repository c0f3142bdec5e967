"""Exponential back-off with full jitter."""

from __future__ import annotations

import random


def capped_delay(attempt: int, base: float, cap: float) -> float:
    """Upper bound for *attempt* (1-based): ``min(cap, base * 2**(attempt-1))``."""
    exponent = max(attempt - 1, 0)
    # 2**64 already dwarfs any sane cap
    return min(cap, base * (2 ** min(exponent, 64)))


def full_jitter_delay(attempt: int, base: float, cap: float, rng: random.Random | None = None) -> float:
    """Delay for retry *attempt*, drawn from ``[base, capped_delay]``.

    Never below ``base`` unless ``cap`` is smaller.
    """
    upper = capped_delay(attempt, base, cap)
    low = min(base, upper)
    return (rng or random).uniform(low, upper)
