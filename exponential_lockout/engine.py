"""Lockout engine: record failures, answer lockout queries, clear state."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .backends import create_backend
from .config import LockoutSettings, settings
from .extraction import RequestData, extract_identity
from .policy import PolicyResolver, ResolvedPolicy
from .scheduler import compute_lockout_duration
from .store import AttemptRecord, AttemptStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutInfo:
    context: str
    identity: str
    attempts: int
    is_locked_out: bool
    remaining_time: int
    locked_until: datetime | None
    last_attempt: datetime | None


def _as_datetime(ts: float | None) -> datetime | None:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts is not None else None


class LockoutEngine:
    def __init__(
        self,
        resolver: PolicyResolver,
        store: AttemptStore,
        clock: Callable[[], float] = time.time,
        lock_ttl_buffer: int = 3600,
        tracking_ttl: int = 3600,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._clock = clock
        self._lock_ttl_buffer = lock_ttl_buffer
        self._tracking_ttl = tracking_ttl

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver

    def policy(self, context: str) -> ResolvedPolicy:
        return self._resolver.resolve(context)

    def _record_ttl(self, policy: ResolvedPolicy, duration: int | None) -> int:
        reset_after = policy.reset_after or 0
        if duration is None:
            return reset_after or self._tracking_ttl
        return max(duration + self._lock_ttl_buffer, reset_after)

    # -- failures ----------------------------------------------------------

    def record_failure(self, context: str, identity: str) -> int:
        """Record a failed attempt and return the attempt count after it."""
        policy = self._resolver.resolve(context)
        now = self._clock()
        durations: list[int | None] = []

        def apply(current: AttemptRecord | None) -> tuple[AttemptRecord, int]:
            attempts = current.attempts if current is not None else 0
            last = current.last_attempt if current is not None else None
            if policy.reset_after is not None and last is not None and now - last >= policy.reset_after:
                attempts = 0
            attempts += 1
            duration = compute_lockout_duration(attempts, policy)
            durations.append(duration)
            record = AttemptRecord(
                attempts=attempts,
                last_attempt=now,
                locked_until=now + duration if duration is not None else None,
            )
            return record, self._record_ttl(policy, duration)

        record = self._store.update(context, identity, apply)
        if durations[-1] is not None:
            logger.warning(
                "Lockout '%s' engaged for %ds after %d failed attempt(s)",
                context,
                durations[-1],
                record.attempts,
            )
        return record.attempts

    # -- queries -----------------------------------------------------------

    def _is_locked(self, record: AttemptRecord | None, now: float) -> bool:
        return record is not None and record.locked_until is not None and record.locked_until > now

    def _remaining(self, record: AttemptRecord | None, now: float) -> int:
        if not self._is_locked(record, now):
            return 0
        return max(1, math.ceil(record.locked_until - now))

    def _load_live(self, context: str, identity: str, now: float) -> AttemptRecord | None:
        """Load the record, dropping it if its lockout has run out."""
        record = self._store.load(context, identity)
        if record is not None and record.locked_until is not None and record.locked_until <= now:
            self._store.discard(context, identity, record)
            logger.debug("Expired lockout record removed for context '%s'", context)
            return None
        return record

    def is_locked_out(self, context: str, identity: str) -> bool:
        self._resolver.resolve(context)
        now = self._clock()
        return self._is_locked(self._load_live(context, identity, now), now)

    def get_remaining_time(self, context: str, identity: str) -> int:
        """Whole seconds left on the lockout; at least 1 while locked, 0 otherwise."""
        self._resolver.resolve(context)
        now = self._clock()
        return self._remaining(self._store.load(context, identity), now)

    def get_attempt_count(self, context: str, identity: str) -> int:
        self._resolver.resolve(context)
        record = self._store.load(context, identity)
        return record.attempts if record is not None else 0

    def get_lockout_info(self, context: str, identity: str) -> LockoutInfo:
        self._resolver.resolve(context)
        now = self._clock()
        record = self._load_live(context, identity, now)
        return LockoutInfo(
            context=context,
            identity=identity,
            attempts=record.attempts if record is not None else 0,
            is_locked_out=self._is_locked(record, now),
            remaining_time=self._remaining(record, now),
            locked_until=_as_datetime(record.locked_until) if record is not None else None,
            last_attempt=_as_datetime(record.last_attempt) if record is not None else None,
        )

    # -- clearing ----------------------------------------------------------

    def clear(self, context: str, identity: str) -> None:
        self._resolver.resolve(context)
        self._store.delete(context, identity)

    def clear_context(self, context: str) -> int:
        """Remove every record for *context*. Returns the number removed."""
        self._resolver.resolve(context)
        removed = self._store.delete_all_for_context(context)
        logger.info("Cleared %d lockout record(s) for context '%s'", removed, context)
        return removed

    # -- request helpers ---------------------------------------------------

    def extract_identity(self, context: str, data: RequestData) -> str:
        policy = self._resolver.resolve(context)
        return extract_identity(context, policy.identity_extractor, data)


def build_engine(config: LockoutSettings, clock: Callable[[], float] = time.time) -> LockoutEngine:
    resolver = PolicyResolver(config.policy_config())
    store = AttemptStore(
        create_backend(config, clock=clock),
        prefix=config.prefix,
        max_retries=config.max_update_retries,
    )
    return LockoutEngine(
        resolver,
        store,
        clock=clock,
        lock_ttl_buffer=config.lock_ttl_buffer_seconds,
        tracking_ttl=config.tracking_ttl_seconds,
    )


# Module-level singleton
_engine: LockoutEngine | None = None


def get_engine() -> LockoutEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings)
    return _engine
