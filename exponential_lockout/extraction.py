"""Identity extraction: which piece of a request identifies the actor."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv6Address, ip_address
from typing import Any, Callable, Mapping

from .errors import IdentityUnavailable

logger = logging.getLogger(__name__)


class ExtractorKind(str, Enum):
    FIELDS = "fields"
    IP = "ip"
    USER = "user"
    CALLABLE = "callable"


@dataclass(frozen=True)
class RequestData:
    """Transport-neutral view of an inbound request."""

    fields: Mapping[str, Any] = field(default_factory=dict)
    client_ip: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class KeyExtractor:
    name: str
    kind: ExtractorKind
    fields: tuple[str, ...] = ()
    func: Callable[[RequestData], Any] | None = None

    @classmethod
    def from_fields(cls, name: str, *fields: str) -> KeyExtractor:
        return cls(name=name, kind=ExtractorKind.FIELDS, fields=fields)

    @classmethod
    def from_callable(cls, name: str, func: Callable[[RequestData], Any]) -> KeyExtractor:
        return cls(name=name, kind=ExtractorKind.CALLABLE, func=func)


BUILTIN_EXTRACTORS: dict[str, KeyExtractor] = {
    "email": KeyExtractor.from_fields("email", "email", "username"),
    "phone": KeyExtractor.from_fields("phone", "phone", "mobile", "telephone"),
    "username": KeyExtractor.from_fields("username", "username", "email"),
    "user_id": KeyExtractor(name="user_id", kind=ExtractorKind.USER),
    "ip": KeyExtractor(name="ip", kind=ExtractorKind.IP),
}


def resolve_extractor(
    key: str | Callable[[RequestData], Any],
    registry: Mapping[str, Callable[[RequestData], Any]] | None = None,
) -> KeyExtractor:
    """Turn a configured ``key`` into a ``KeyExtractor``.

    Registered functions shadow built-ins of the same name. An unknown name is
    read as a single request field.
    """
    if callable(key):
        return KeyExtractor.from_callable(getattr(key, "__name__", "callable"), key)
    if registry and key in registry:
        return KeyExtractor.from_callable(key, registry[key])
    builtin = BUILTIN_EXTRACTORS.get(key)
    if builtin is not None:
        return builtin
    return KeyExtractor.from_fields(key, key)


def normalize_ip(raw: str | None) -> str | None:
    """Canonical text form of *raw*; IPv4-mapped IPv6 becomes plain IPv4.

    Unparseable values are returned stripped, unchanged.
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    try:
        addr = ip_address(raw)
    except ValueError:
        return raw
    if isinstance(addr, IPv6Address) and addr.ipv4_mapped:
        addr = addr.ipv4_mapped
    return str(addr)


def _first_value(data: RequestData, names: tuple[str, ...]) -> str | None:
    for name in names:
        value = data.fields.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def extract_identity(context: str, extractor: KeyExtractor, data: RequestData) -> str:
    """Return the identity for *data*, falling back to the client IP."""
    kind = extractor.kind
    if kind is ExtractorKind.FIELDS:
        value = _first_value(data, extractor.fields)
    elif kind is ExtractorKind.USER:
        value = str(data.user_id) if data.user_id else None
    elif kind is ExtractorKind.CALLABLE:
        result = extractor.func(data) if extractor.func is not None else None
        value = str(result) if result else None
    elif kind is ExtractorKind.IP:
        value = None
    else:
        raise ValueError(f"Unsupported extractor kind: {kind}")

    if value:
        return value

    ip = normalize_ip(data.client_ip)
    if kind is not ExtractorKind.IP:
        logger.warning(
            "Lockout key '%s' missing from request for context '%s'; falling back to IP address",
            extractor.name,
            context,
        )
    if not ip:
        raise IdentityUnavailable(
            f"Unable to extract lockout key for context '{context}' - no fallback IP available."
        )
    return ip
