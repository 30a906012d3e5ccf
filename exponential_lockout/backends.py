"""TTL key-value backends for attempt records."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

import redis
from redis.exceptions import RedisError, WatchError

from .config import LockoutSettings
from .errors import BackendUnavailable

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, ttl: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def compare_and_swap(
        self, key: str, expected: str | None, new: str | None, ttl: int = 0
    ) -> bool:
        """Write *new* (delete when ``None``) only if the stored value equals *expected*.

        ``expected=None`` means the key must be absent. Returns ``False`` on conflict.
        """
        ...

    def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        """Track *member* under *index_key* until its own TTL runs out."""
        ...

    def remove_from_index(self, index_key: str, member: str) -> None: ...

    def index_members(self, index_key: str) -> set[str]:
        """Members whose TTL has not yet run out."""
        ...


class MemoryBackend:
    """Process-local backend.

    Entries expire lazily on access. Writes also sweep every expired value and
    index member at most once per *sweep_interval* seconds, so keys that are
    never read again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, tuple[str, float]] = {}
        # index key -> {member: expires_at}
        self._indexes: dict[str, dict[str, float]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = 0.0

    def _live(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._values[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval
        expired = [key for key, (_, expires_at) in self._values.items() if expires_at <= now]
        for key in expired:
            del self._values[key]
        for index_key in list(self._indexes):
            members = self._indexes[index_key]
            for member in [m for m, expires_at in members.items() if expires_at <= now]:
                del members[member]
            if not members:
                del self._indexes[index_key]
        if expired:
            logger.debug("Swept %d expired key(s)", len(expired))

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._sweep()
            self._values[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            found = self._live(key) is not None
            self._values.pop(key, None)
            return self._indexes.pop(key, None) is not None or found

    def compare_and_swap(
        self, key: str, expected: str | None, new: str | None, ttl: int = 0
    ) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            if new is None:
                self._values.pop(key, None)
            else:
                self._sweep()
                self._values[key] = (new, self._clock() + ttl)
            return True

    def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        with self._lock:
            self._sweep()
            self._indexes.setdefault(index_key, {})[member] = self._clock() + ttl

    def remove_from_index(self, index_key: str, member: str) -> None:
        with self._lock:
            members = self._indexes.get(index_key)
            if members is None:
                return
            members.pop(member, None)
            if not members:
                del self._indexes[index_key]

    def index_members(self, index_key: str) -> set[str]:
        with self._lock:
            now = self._clock()
            members = self._indexes.get(index_key, {})
            return {member for member, expires_at in members.items() if expires_at > now}

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._indexes.clear()


class RedisBackend:
    """Redis backend. Connection failures surface as ``BackendUnavailable``.

    Context indexes are sorted sets scored by each member's expiry time, so
    members whose record has expired can be trimmed with ZREMRANGEBYSCORE.
    """

    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time) -> None:
        self._client = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, clock: Callable[[], float] = time.time) -> RedisBackend:
        return cls(redis.Redis.from_url(url, decode_responses=True), clock=clock)

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except RedisError as exc:
            raise BackendUnavailable(f"Redis GET failed: {exc}") from exc

    def put(self, key: str, value: str, ttl: int) -> None:
        try:
            self._client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise BackendUnavailable(f"Redis SET failed: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(key))
        except RedisError as exc:
            raise BackendUnavailable(f"Redis DEL failed: {exc}") from exc

    def compare_and_swap(
        self, key: str, expected: str | None, new: str | None, ttl: int = 0
    ) -> bool:
        try:
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    if pipe.get(key) != expected:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    if new is None:
                        pipe.delete(key)
                    else:
                        pipe.set(key, new, ex=ttl)
                    pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Concurrent write on %s, CAS aborted", key)
                    return False
        except RedisError as exc:
            raise BackendUnavailable(f"Redis transaction failed: {exc}") from exc

    def add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        now = self._clock()
        try:
            self._client.zadd(index_key, {member: now + ttl})
            self._client.zremrangebyscore(index_key, "-inf", now)
            # Never shorten the index below a member's lifetime
            if self._client.ttl(index_key) < ttl:
                self._client.expire(index_key, ttl)
        except RedisError as exc:
            raise BackendUnavailable(f"Redis index update failed: {exc}") from exc

    def remove_from_index(self, index_key: str, member: str) -> None:
        try:
            self._client.zrem(index_key, member)
        except RedisError as exc:
            raise BackendUnavailable(f"Redis ZREM failed: {exc}") from exc

    def index_members(self, index_key: str) -> set[str]:
        try:
            return set(self._client.zrangebyscore(index_key, f"({self._clock()}", "+inf"))
        except RedisError as exc:
            raise BackendUnavailable(f"Redis ZRANGEBYSCORE failed: {exc}") from exc


def create_backend(settings: LockoutSettings, clock: Callable[[], float] = time.time) -> KeyValueBackend:
    if settings.backend == "redis":
        logger.info("Using Redis lockout backend")
        return RedisBackend.from_url(settings.redis_url, clock=clock)
    return MemoryBackend(clock=clock)
