# fastapi_stash/policy.py

"""
Pile-up (cache stampede) policies.

A policy decides what a caller sees when it misses on a key while another
caller holds the regeneration lock for that key.
"""

from enum import Enum


class PileUpPolicy(str, Enum):
    """Supported pile-up policies."""
    IGNORE = "ignore"
    PREEMPT = "preempt"
    SLEEP = "sleep"
    VALUE = "value"


# Strategies tried, in order, by a caller that misses while a lock is held.
# PREEMPT acts on the hit path only, so on a miss it defers to the others.
PILE_UP_STRATEGIES: dict[PileUpPolicy, tuple[PileUpPolicy, ...]] = {
    PileUpPolicy.IGNORE: (),
    PileUpPolicy.PREEMPT: (PileUpPolicy.VALUE, PileUpPolicy.SLEEP),
    PileUpPolicy.SLEEP: (PileUpPolicy.SLEEP, PileUpPolicy.VALUE),
    PileUpPolicy.VALUE: (PileUpPolicy.VALUE, PileUpPolicy.SLEEP),
}

DEFAULT_PILE_UP_POLICY = PileUpPolicy.PREEMPT
DEFAULT_PREEMPT_TIME = 30  # seconds
DEFAULT_SLEEP_TIME = 500  # milliseconds
DEFAULT_SLEEP_ATTEMPTS = 10

# Lifetime of a regeneration lock, in seconds
LOCK_TTL = 30


def strategies_for(policy: PileUpPolicy) -> tuple[PileUpPolicy, ...]:
    """Return the ordered fallback strategies for a policy."""
    return PILE_UP_STRATEGIES[policy]


def positive(name: str, value: int) -> int:
    """Validate a pile-up tunable."""
    if isinstance(value, bool) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


__all__ = [
    "PileUpPolicy",
    "PILE_UP_STRATEGIES",
    "DEFAULT_PILE_UP_POLICY",
    "DEFAULT_PREEMPT_TIME",
    "DEFAULT_SLEEP_TIME",
    "DEFAULT_SLEEP_ATTEMPTS",
    "LOCK_TTL",
    "positive",
    "strategies_for",
]
