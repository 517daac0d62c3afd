"""Capped exponential backoff with jitter."""

from __future__ import annotations

import random

DEFAULT_JITTER_S = 0.2


def backoff_delay(
    attempt: int,
    base_s: float,
    max_s: float,
    *,
    jitter_s: float = DEFAULT_JITTER_S,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    source = rng or random
    jitter = source.uniform(0.0, jitter_s) if jitter_s > 0 else 0.0
    raw = base_s * 2 ** max(0, attempt - 1)
    return min(max_s, raw + jitter)
