"""
Latency and failure simulation primitives.
"""

import random
from typing import Optional

from mockrig.core.models import DelaySpec, FixedDelay, RangeDelay


def compute_delay(spec: Optional[DelaySpec], global_factor: float, rng: Optional[random.Random] = None) -> float:
    """
    Delay in milliseconds for one request.

    A range draws uniformly from [min, max); the result is scaled by the global
    delay factor, which never goes below zero.
    """
    if spec is None:
        return 0.0
    rng = rng or random
    if isinstance(spec, RangeDelay):
        base = spec.min_ms + rng.random() * (spec.max_ms - spec.min_ms)
    elif isinstance(spec, FixedDelay):
        base = spec.ms
    else:
        raise TypeError(f"Unknown delay spec: {spec!r}")
    return base * max(global_factor, 0.0)


def should_fail(fail_probability: float, rng: Optional[random.Random] = None) -> bool:
    if fail_probability <= 0:
        return False
    if fail_probability >= 1:
        return True
    return (rng or random).random() <= fail_probability
