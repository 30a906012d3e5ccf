"""Map an attempt count to a lockout duration."""

from __future__ import annotations

from .policy import ResolvedPolicy


def compute_lockout_duration(attempts: int, policy: ResolvedPolicy) -> int | None:
    """Seconds to lock for after *attempts* failures, or ``None`` for a grace attempt.

    The attempt that reaches ``min_attempts`` takes the first delay; past the
    end of the sequence the last delay repeats.
    """
    if attempts < policy.min_attempts:
        return None
    index = min(attempts - policy.min_attempts, len(policy.delays) - 1)
    return policy.delays[index]


def lockout_schedule(policy: ResolvedPolicy, count: int) -> list[int | None]:
    """Durations for attempts ``1..count``."""
    return [compute_lockout_duration(n, policy) for n in range(1, count + 1)]
