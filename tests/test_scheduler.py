"""Tests for the delay schedule."""

from __future__ import annotations

from exponential_lockout.config import ResponseMode
from exponential_lockout.extraction import BUILTIN_EXTRACTORS
from exponential_lockout.policy import ResolvedPolicy
from exponential_lockout.scheduler import compute_lockout_duration, lockout_schedule


def _policy(min_attempts: int = 3, delays: tuple[int, ...] = (60, 300, 900)) -> ResolvedPolicy:
    return ResolvedPolicy(
        context="login",
        enabled=True,
        min_attempts=min_attempts,
        delays=delays,
        reset_after=None,
        response_mode=ResponseMode.AUTO,
        identity_extractor=BUILTIN_EXTRACTORS["ip"],
        redirect_route="login",
    )


class TestComputeLockoutDuration:
    def test_grace_attempts_have_no_lockout(self):
        policy = _policy(min_attempts=3)
        assert compute_lockout_duration(0, policy) is None
        assert compute_lockout_duration(1, policy) is None
        assert compute_lockout_duration(2, policy) is None

    def test_attempt_at_threshold_locks_with_first_delay(self):
        assert compute_lockout_duration(3, _policy(min_attempts=3)) == 60

    def test_walks_the_sequence(self):
        policy = _policy(min_attempts=3)
        assert compute_lockout_duration(4, policy) == 300
        assert compute_lockout_duration(5, policy) == 900

    def test_saturates_at_last_delay(self):
        policy = _policy(min_attempts=3)
        assert compute_lockout_duration(6, policy) == 900
        assert compute_lockout_duration(1000, policy) == 900

    def test_min_attempts_one_locks_immediately(self):
        policy = _policy(min_attempts=1, delays=(30, 60))
        assert compute_lockout_duration(1, policy) == 30
        assert compute_lockout_duration(2, policy) == 60

    def test_single_delay(self):
        policy = _policy(min_attempts=2, delays=(120,))
        assert compute_lockout_duration(2, policy) == 120
        assert compute_lockout_duration(9, policy) == 120

    def test_monotonic_non_decreasing(self):
        policy = _policy(min_attempts=2, delays=(10, 20, 20, 40))
        durations = [compute_lockout_duration(n, policy) or 0 for n in range(0, 20)]
        assert durations == sorted(durations)


class TestLockoutSchedule:
    def test_lists_durations_from_first_attempt(self):
        assert lockout_schedule(_policy(min_attempts=2, delays=(60, 300)), 4) == [None, 60, 300, 300]
