# ql_platform/cache.py
# QLSync - Small in-memory TTL caches (auth token, variable list, identity checks)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float
    stored_at: float


class TTLCache(Generic[T]):
    """Single-slot cache holding one value until ``ttl`` seconds have passed."""

    def __init__(self, ttl: float, *, clock: Clock = time.time) -> None:
        self.ttl = float(ttl)
        self._clock = clock
        self._entry: CacheEntry[T] | None = None
        self._lock = threading.Lock()

    def get(self) -> T | None:
        with self._lock:
            e = self._entry
            if e is None:
                return None
            if self._clock() >= e.expires_at:
                self._entry = None
                return None
            return e.value

    def set(self, value: T, *, ttl: float | None = None) -> T:
        now = self._clock()
        with self._lock:
            self._entry = CacheEntry(value=value, expires_at=now + (self.ttl if ttl is None else float(ttl)), stored_at=now)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    def expire(self) -> None:
        with self._lock:
            if self._entry is not None:
                self._entry.expires_at = self._clock()

    @property
    def stored_at(self) -> float:
        e = self._entry
        return e.stored_at if e else 0.0

    def get_or_refresh(self, refresh: Callable[[], T], *, force: bool = False) -> T:
        if not force:
            hit = self.get()
            if hit is not None:
                return hit
        return self.set(refresh())


class KeyedTTLCache(Generic[T]):
    def __init__(self, ttl: float, *, clock: Clock = time.time) -> None:
        self.ttl = float(ttl)
        self._clock = clock
        self._items: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            e = self._items.get(key)
            if e is None:
                return None
            if self._clock() > e.expires_at:
                self._items.pop(key, None)
                return None
            return e.value

    def set(self, key: str, value: T) -> T:
        now = self._clock()
        with self._lock:
            for k in [k for k, e in self._items.items() if now > e.expires_at]:
                del self._items[k]
            self._items[key] = CacheEntry(value=value, expires_at=now + self.ttl, stored_at=now)
        return value

    def pop(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def get_or_refresh(self, key: str, refresh: Callable[[], T], *, force: bool = False) -> T:
        if not force:
            hit = self.get(key)
            if hit is not None:
                return hit
        return self.set(key, refresh())


__all__ = ["TTLCache", "KeyedTTLCache", "CacheEntry", "Clock"]
