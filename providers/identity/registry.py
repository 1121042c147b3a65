# providers/identity/registry.py
# QLSync - Identity matcher registry
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import importlib
import pkgutil
from pathlib import Path
from types import ModuleType
from typing import Any, Iterable

from ql_platform.cookies import extract_domain

from ._id_base import NOOP, IdentityMatcher

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="SYNC")


PKG_NAME: str = __package__ or "providers.identity"
try:
    import providers.identity as _idpkg
    PKG_PATHS = list(getattr(_idpkg, "__path__", []))
except Exception:
    PKG_PATHS: list[str] = []


def _discover_module_names() -> list[str]:
    names: set[str] = set()
    for _, name, ispkg in pkgutil.iter_modules(PKG_PATHS):
        if not ispkg and name.startswith("_id_") and name != "_id_base":
            names.add(name)
    for p in PKG_PATHS:
        for f in Path(p).glob("_id_*.py"):
            if f.stem != "_id_base":
                names.add(f.stem)
    return sorted(names)


def _safe_import(fullname: str) -> ModuleType | None:
    try:
        return importlib.import_module(fullname)
    except Exception as e:
        _log(f"matcher module {fullname} failed to import: {e}", level="WARN")
        return None


def discover_matchers() -> list[Any]:
    importlib.invalidate_caches()
    out: list[Any] = []
    for modname in _discover_module_names():
        mod = _safe_import(f"{PKG_NAME}.{modname}")
        prov = getattr(mod, "PROVIDER", None) if mod is not None else None
        if prov is not None:
            out.append(prov)
    return out


class MatcherRegistry:
    def __init__(self, matchers: Iterable[IdentityMatcher] | None = None) -> None:
        self._matchers: list[IdentityMatcher] = list(matchers) if matchers is not None else discover_matchers()

    @property
    def matchers(self) -> list[IdentityMatcher]:
        return list(self._matchers)

    def for_domain(self, domain: str) -> IdentityMatcher:
        for m in self._matchers:
            if m.is_recognized(domain):
                return m
        return NOOP

    def for_url(self, url: str) -> IdentityMatcher:
        return self.for_domain(extract_domain(url))

    def manifests(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for m in self._matchers:
            man = m.manifest()
            if man is not None:
                out.append(vars(man).copy())
        return out


__all__ = ["MatcherRegistry", "discover_matchers"]
