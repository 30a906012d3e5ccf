"""Exception hierarchy shared by the resolver, store, engine and adapters."""

from __future__ import annotations


class LockoutError(Exception):
    """Base for all lockout errors."""


class UnknownContext(LockoutError, LookupError):
    def __init__(self, context: str) -> None:
        super().__init__(f"Lockout context '{context}' is not configured.")
        self.context = context


class ContextDisabled(LockoutError):
    def __init__(self, context: str) -> None:
        super().__init__(f"Lockout context '{context}' is disabled.")
        self.context = context


class InvalidPolicy(LockoutError, ValueError):
    """Configuration is malformed (empty delays, negative thresholds, ...)."""


class CyclicInheritance(InvalidPolicy):
    def __init__(self, context: str, chain: list[str]) -> None:
        super().__init__(
            f"Lockout context '{context}' has cyclic inheritance: {' -> '.join(chain)}"
        )
        self.context = context
        self.chain = chain


class BackendUnavailable(LockoutError):
    """The key-value store could not be reached. Safe to retry."""


class ConcurrentUpdateError(BackendUnavailable):
    """An attempt record kept changing underneath an update."""


class IdentityUnavailable(LockoutError):
    """No identity and no client IP could be extracted from a request."""
