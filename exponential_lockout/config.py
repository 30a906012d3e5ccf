"""Settings and policy configuration.

Deployment settings (backend, key prefix, TTLs) come from the environment via
pydantic-settings. Policies (templates and contexts) come from a JSON file, or
from the built-in defaults below when no file is configured.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings

from .errors import InvalidPolicy

# 1min, 5min, 15min, 30min, 2hr, 6hr, 12hr, 24hr
DEFAULT_DELAYS = [60, 300, 900, 1800, 7200, 21600, 43200, 86400]


class ResponseMode(str, Enum):
    AUTO = "auto"
    JSON = "json"
    REDIRECT = "redirect"
    CALLBACK = "callback"


class PolicyFragment(BaseModel):
    """A template or context entry. Only fields set explicitly take part in inheritance."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    enabled: bool | None = None
    min_attempts: int | None = None
    delays: list[int] | None = None
    reset_after: int | None = None  # seconds
    reset_after_hours: float | None = None
    response_mode: ResponseMode | None = None
    key: str | Callable[..., Any] | None = None
    redirect_route: str | None = None
    extends: str | None = None


DEFAULT_TEMPLATES: dict[str, dict[str, Any]] = {
    "strict": {
        "enabled": True,
        "min_attempts": 1,
        "delays": [300, 900, 1800, 7200, 21600],
        "reset_after_hours": 48,
    },
    "lenient": {
        "enabled": True,
        "min_attempts": 5,
        "delays": [30, 60, 180, 300, 600],
        "reset_after_hours": 12,
    },
    "api": {
        "enabled": True,
        "response_mode": "json",
        "min_attempts": 3,
        "delays": [60, 300, 900, 1800, 7200],
        "reset_after_hours": 24,
    },
    "web": {
        "enabled": True,
        "response_mode": "redirect",
        "min_attempts": 3,
        "delays": [60, 300, 900, 1800, 7200],
        "reset_after_hours": 24,
    },
    "mfa": {
        "enabled": True,
        "min_attempts": 2,
        "delays": [30, 60, 120, 300, 600],
        "reset_after_hours": 12,
    },
}

DEFAULT_CONTEXTS: dict[str, dict[str, Any]] = {
    "login": {"extends": "web", "key": "email", "redirect_route": "login"},
    "otp": {"extends": "mfa", "key": "phone", "response_mode": "json"},
    "pin": {"extends": "web", "key": "user_id", "delays": [60, 300, 900, 1800]},
    "admin": {"extends": "strict", "key": "email", "redirect_route": "admin.login"},
    "api_login": {"extends": "api", "key": "email"},
    "api_otp": {"extends": "mfa", "key": "phone", "response_mode": "json"},
    "password_reset": {"extends": "web", "key": "email", "redirect_route": "password.request"},
    "email_verification": {"extends": "mfa", "key": "email", "response_mode": "json"},
    "two_factor": {"extends": "mfa", "key": "user_id", "response_mode": "json"},
}


class PolicyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    default_delays: list[int] = Field(default_factory=lambda: list(DEFAULT_DELAYS))
    default_response_mode: ResponseMode = ResponseMode.AUTO
    default_min_attempts: int = 3
    default_redirect_route: str = "login"
    templates: dict[str, PolicyFragment] = Field(default_factory=dict)
    contexts: dict[str, PolicyFragment] = Field(default_factory=dict)
    # Named extraction functions, referenced from a fragment's ``key``
    key_extractors: dict[str, Callable[..., Any]] = Field(default_factory=dict)

    @classmethod
    def defaults(cls) -> PolicyConfig:
        return cls.model_validate({"templates": DEFAULT_TEMPLATES, "contexts": DEFAULT_CONTEXTS})


def load_policy_config(path: str | Path) -> PolicyConfig:
    """Read a JSON policy file. Any read or validation problem is an ``InvalidPolicy``."""
    try:
        raw = Path(path).read_text()
    except OSError as exc:
        raise InvalidPolicy(f"Cannot read lockout config {path}: {exc}") from exc
    try:
        return PolicyConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise InvalidPolicy(f"Invalid lockout config {path}: {exc}") from exc


class LockoutSettings(BaseSettings):
    prefix: str = "exponential_lockout"
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    config_file: str = ""  # JSON policy file, empty means built-in defaults

    # Record lifetimes
    lock_ttl_buffer_seconds: int = 3600
    tracking_ttl_seconds: int = 3600
    max_update_retries: int = 10

    # HTTP rejection
    http_status_code: int = 429
    include_headers: bool = True

    model_config = {"env_prefix": "LOCKOUT_", "env_file": ".env", "extra": "ignore"}

    def policy_config(self) -> PolicyConfig:
        if self.config_file:
            return load_policy_config(self.config_file)
        return PolicyConfig.defaults()


settings = LockoutSettings()
