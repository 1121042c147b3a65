# providers/identity/_id_base.py
# QLSync - Identity matcher base types
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol
from urllib.parse import unquote

from ..panel.qinglong import RemoteVariable


@dataclass
class MatcherManifest:
    name: str
    label: str
    root_domain: str
    variable_name: str
    fields: list[str] = field(default_factory=list)


@dataclass
class IdentityValidation:
    valid: bool
    reason: str = ""
    identity: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "reason": self.reason, "data": self.identity}


@dataclass
class IdentityMatch:
    matched: bool
    variable: RemoteVariable | None = None
    reason: str = ""


class IdentityMatcher(Protocol):
    name: str

    def manifest(self) -> MatcherManifest | None: ...
    def is_recognized(self, domain: str) -> bool: ...
    def validate_identity(self, cookie_string: str) -> IdentityValidation: ...
    def match_remote_variable(self, variables: Iterable[RemoteVariable], cookie_string: str) -> IdentityMatch: ...


def get_cookie_value(cookie_string: str | None, name: str) -> str | None:
    """Raw value of ``name`` in a ``k=v;k=v`` string; split on the first ``=`` only."""
    if not cookie_string or not name:
        return None
    for seg in cookie_string.split(";"):
        seg = seg.strip()
        key, _, value = seg.partition("=")
        if key == name:
            return value
    return None


def extract_field(cookie_string: str | None, name: str) -> str | None:
    raw = get_cookie_value(cookie_string, name)
    if not raw:
        return None
    return unquote(raw, encoding="utf-8")


class NoopMatcher:
    name = "NOOP"

    def manifest(self) -> MatcherManifest | None:
        return None

    def is_recognized(self, domain: str) -> bool:
        return False

    def validate_identity(self, cookie_string: str) -> IdentityValidation:
        return IdentityValidation(valid=False, reason="no identity rules for this site")

    def match_remote_variable(self, variables: Iterable[RemoteVariable], cookie_string: str) -> IdentityMatch:
        return IdentityMatch(matched=False, reason="no identity rules for this site")


NOOP = NoopMatcher()

__all__ = [
    "MatcherManifest",
    "IdentityValidation",
    "IdentityMatch",
    "IdentityMatcher",
    "NoopMatcher",
    "NOOP",
    "get_cookie_value",
    "extract_field",
]
