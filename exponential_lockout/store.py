"""Persistence of per-(context, identity) attempt records."""

from __future__ import annotations

import hashlib
import logging
from typing import Callable

from pydantic import BaseModel, Field

from .backends import KeyValueBackend
from .errors import ConcurrentUpdateError

logger = logging.getLogger(__name__)

INDEX_SUFFIX = "__index__"


class AttemptRecord(BaseModel):
    attempts: int = Field(default=0, ge=0)
    locked_until: float | None = None
    last_attempt: float | None = None

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, raw: str) -> AttemptRecord:
        return cls.model_validate_json(raw)


# mutate(current) -> (new record, ttl seconds)
Mutation = Callable[[AttemptRecord | None], tuple[AttemptRecord, int]]


class AttemptStore:
    """Keyed, TTL-bound attempt records on top of a ``KeyValueBackend``.

    Identities are hashed with SHA-256 before they become part of a key, so raw
    emails and phone numbers never show up in the key space.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        prefix: str = "exponential_lockout",
        max_retries: int = 10,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        self._max_retries = max_retries

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def key_for(self, context: str, identity: str) -> str:
        digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
        return f"{self._prefix}:{context}:{digest}"

    def index_key(self, context: str) -> str:
        return f"{self._prefix}:{context}:{INDEX_SUFFIX}"

    def load(self, context: str, identity: str) -> AttemptRecord | None:
        raw = self._backend.get(self.key_for(context, identity))
        return AttemptRecord.decode(raw) if raw is not None else None

    def save(self, context: str, identity: str, record: AttemptRecord, ttl: int) -> None:
        key = self.key_for(context, identity)
        self._backend.put(key, record.encode(), ttl)
        self._backend.add_to_index(self.index_key(context), key, ttl)

    def delete(self, context: str, identity: str) -> bool:
        key = self.key_for(context, identity)
        self._backend.remove_from_index(self.index_key(context), key)
        return self._backend.delete(key)

    def discard(self, context: str, identity: str, record: AttemptRecord) -> bool:
        """Delete the record only if it still holds *record*."""
        key = self.key_for(context, identity)
        if not self._backend.compare_and_swap(key, record.encode(), None):
            return False
        self._backend.remove_from_index(self.index_key(context), key)
        return True

    def update(self, context: str, identity: str, mutate: Mutation) -> AttemptRecord:
        """Atomically apply *mutate* to the stored record, retrying on conflict."""
        key = self.key_for(context, identity)
        for attempt in range(self._max_retries):
            raw = self._backend.get(key)
            current = AttemptRecord.decode(raw) if raw is not None else None
            record, ttl = mutate(current)
            if self._backend.compare_and_swap(key, raw, record.encode(), ttl):
                self._backend.add_to_index(self.index_key(context), key, ttl)
                return record
            logger.debug("Conflicting write on %s, retry %d", key, attempt + 1)
        raise ConcurrentUpdateError(
            f"Attempt record {key} changed {self._max_retries} times during update"
        )

    def delete_all_for_context(self, context: str) -> int:
        """Delete every record indexed under *context*. Returns how many existed.

        Members whose record is already gone are dropped from the index too.
        """
        index_key = self.index_key(context)
        removed = 0
        for key in self._backend.index_members(index_key):
            if self._backend.delete(key):
                removed += 1
            self._backend.remove_from_index(index_key, key)
        self._backend.delete(index_key)
        return removed
