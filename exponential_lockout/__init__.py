"""Exponential lockout for repeated failed actions (login, OTP, PIN, ...)."""

from .backends import KeyValueBackend, MemoryBackend, RedisBackend
from .config import LockoutSettings, PolicyConfig, PolicyFragment, ResponseMode
from .engine import LockoutEngine, LockoutInfo, build_engine, get_engine
from .errors import (
    BackendUnavailable,
    ConcurrentUpdateError,
    ContextDisabled,
    CyclicInheritance,
    IdentityUnavailable,
    InvalidPolicy,
    LockoutError,
    UnknownContext,
)
from .extraction import KeyExtractor, RequestData
from .policy import PolicyResolver, ResolvedPolicy
from .scheduler import compute_lockout_duration
from .store import AttemptRecord, AttemptStore

__all__ = [
    "AttemptRecord",
    "AttemptStore",
    "BackendUnavailable",
    "ConcurrentUpdateError",
    "ContextDisabled",
    "CyclicInheritance",
    "IdentityUnavailable",
    "InvalidPolicy",
    "KeyExtractor",
    "KeyValueBackend",
    "LockoutEngine",
    "LockoutError",
    "LockoutInfo",
    "LockoutSettings",
    "MemoryBackend",
    "PolicyConfig",
    "PolicyFragment",
    "PolicyResolver",
    "RedisBackend",
    "ResolvedPolicy",
    "ResponseMode",
    "RequestData",
    "UnknownContext",
    "build_engine",
    "compute_lockout_duration",
    "get_engine",
]
