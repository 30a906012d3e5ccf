"""Resolve templates and contexts into flat, validated per-context policies."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from .config import PolicyConfig, PolicyFragment, ResponseMode
from .errors import ContextDisabled, CyclicInheritance, InvalidPolicy, UnknownContext
from .extraction import KeyExtractor, resolve_extractor

logger = logging.getLogger(__name__)

# Fields where an explicit null still counts as an override
_NULLABLE_FIELDS = frozenset({"reset_after"})


@dataclass(frozen=True)
class ResolvedPolicy:
    context: str
    enabled: bool
    min_attempts: int
    delays: tuple[int, ...]
    reset_after: int | None
    response_mode: ResponseMode
    identity_extractor: KeyExtractor
    redirect_route: str


def _explicit_fields(fragment: PolicyFragment) -> dict[str, Any]:
    """Fields this fragment sets itself, with ``reset_after_hours`` folded into ``reset_after``."""
    values: dict[str, Any] = {}
    for name in fragment.model_fields_set:
        if name in ("extends", "reset_after_hours"):
            continue
        value = getattr(fragment, name)
        if value is None and name not in _NULLABLE_FIELDS:
            continue
        values[name] = value
    if "reset_after" not in values and fragment.reset_after_hours is not None:
        values["reset_after"] = int(fragment.reset_after_hours * 3600)
    return values


class PolicyResolver:
    """Flattens every context once; lookups afterwards are plain dict reads."""

    def __init__(self, config: PolicyConfig) -> None:
        self._write_lock = threading.Lock()
        self._config = config
        self._policies: dict[str, ResolvedPolicy] = self._resolve_all(config)

    @property
    def config(self) -> PolicyConfig:
        return self._config

    def contexts(self) -> list[str]:
        return sorted(self._policies)

    def policies(self) -> dict[str, ResolvedPolicy]:
        """Every resolved policy, disabled ones included."""
        return dict(self._policies)

    def resolve(self, context: str) -> ResolvedPolicy:
        policy = self._policies.get(context)
        if policy is None:
            raise UnknownContext(context)
        if not policy.enabled:
            raise ContextDisabled(context)
        return policy

    def reload(self, config: PolicyConfig) -> None:
        """Re-resolve from *config*; the old policies stay live if it is invalid."""
        policies = self._resolve_all(config)
        with self._write_lock:
            self._config = config
            self._policies = policies
        logger.info("Reloaded lockout policies for %d context(s)", len(policies))

    # -- resolution --------------------------------------------------------

    def _resolve_all(self, config: PolicyConfig) -> dict[str, ResolvedPolicy]:
        return {name: self._resolve_one(config, name) for name in config.contexts}

    def _resolve_one(self, config: PolicyConfig, context: str) -> ResolvedPolicy:
        merged: dict[str, Any] = {}
        fragment = config.contexts[context]
        chain = [context]
        visited: set[str] = set()

        while True:
            for name, value in _explicit_fields(fragment).items():
                merged.setdefault(name, value)
            parent = fragment.extends
            if not parent:
                break
            if parent in visited:
                raise CyclicInheritance(context, chain + [parent])
            if parent not in config.templates:
                raise InvalidPolicy(
                    f"Lockout context '{context}' extends unknown template '{parent}'"
                )
            visited.add(parent)
            chain.append(parent)
            fragment = config.templates[parent]

        delays = merged.get("delays", config.default_delays)
        min_attempts = merged.get("min_attempts", config.default_min_attempts)
        reset_after = merged.get("reset_after")

        if not delays:
            raise InvalidPolicy(f"Lockout context '{context}' has an empty delay sequence")
        if any(delay <= 0 for delay in delays):
            raise InvalidPolicy(f"Lockout context '{context}' has non-positive delays: {delays}")
        if any(a > b for a, b in zip(delays, delays[1:])):
            raise InvalidPolicy(f"Lockout context '{context}' has decreasing delays: {delays}")
        if min_attempts < 0:
            raise InvalidPolicy(f"Lockout context '{context}' has negative min_attempts")
        if reset_after is not None and reset_after <= 0:
            raise InvalidPolicy(f"Lockout context '{context}' has non-positive reset_after")

        return ResolvedPolicy(
            context=context,
            enabled=merged.get("enabled", True),
            min_attempts=min_attempts,
            delays=tuple(delays),
            reset_after=reset_after,
            response_mode=merged.get("response_mode", config.default_response_mode),
            identity_extractor=resolve_extractor(merged.get("key", "ip"), config.key_extractors),
            redirect_route=merged.get("redirect_route", config.default_redirect_route),
        )
