from __future__ import annotations

import pytest

from exponential_lockout.backends import MemoryBackend
from exponential_lockout.config import PolicyConfig
from exponential_lockout.engine import LockoutEngine
from exponential_lockout.policy import PolicyResolver
from exponential_lockout.store import AttemptStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Build an engine over a fresh memory backend from raw policy config."""

    def _make(contexts: dict, templates: dict | None = None, **kwargs) -> LockoutEngine:
        config = PolicyConfig.model_validate({"contexts": contexts, "templates": templates or {}})
        backend = kwargs.pop("backend", None)
        if backend is None:
            backend = MemoryBackend(clock=clock)
        store = AttemptStore(backend, prefix="test", max_retries=kwargs.pop("max_retries", 10))
        return LockoutEngine(PolicyResolver(config), store, clock=clock, **kwargs)

    return _make
