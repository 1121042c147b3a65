# ql_platform/cookies.py
# QLSync - Cookie accessor: read/delete cookies for a URL and build the cookie string
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import http.cookiejar
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol
from urllib.parse import urlparse

from .errors import CookieAccessError, CookieNotFoundError, NoCookiesFoundError

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="COOKIE")


@dataclass
class Cookie:
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    same_site: str = "unspecified"
    expiration_date: float | None = None  # epoch seconds; None = session cookie

    @property
    def session(self) -> bool:
        return self.expiration_date is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "expirationDate": self.expiration_date,
            "session": self.session,
        }


@dataclass
class CookieChange:
    cookie: Cookie
    removed: bool = False
    cause: str = "explicit"


CookieListener = Callable[[CookieChange], None]


class CookieJar(Protocol):
    def get_all(self, url: str) -> list[Cookie]: ...
    def remove(self, url: str, name: str) -> None: ...
    def add_listener(self, fn: CookieListener) -> Callable[[], None]: ...


# ── URL / domain helpers ─────────────────────────────────────────────────
def extract_domain(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except Exception:
        return ""


def domain_matches(site_domain: str, cookie_domain: str) -> bool:
    """Loose match used by the change listener: substring either way."""
    s = (site_domain or "").lower()
    c = (cookie_domain or "").lower().lstrip(".")
    if not s or not c:
        return False
    return c in s or s in c


def _cookie_applies(cookie: Cookie, url: str) -> bool:
    p = urlparse(url)
    host = (p.hostname or "").lower()
    dom = (cookie.domain or "").lower()
    if dom.startswith("."):
        base = dom[1:]
        if not (host == base or host.endswith("." + base)):
            return False
    elif dom and host != dom:
        return False
    path = p.path or "/"
    cpath = cookie.path or "/"
    if not path.startswith(cpath):
        return False
    if cookie.secure and p.scheme != "https":
        return False
    return True


def removal_url(cookie: Cookie) -> str:
    scheme = "https" if cookie.secure else "http"
    return f"{scheme}://{cookie.domain.lstrip('.')}{cookie.path or '/'}"


# ── Jars ─────────────────────────────────────────────────────────────────
class _ListenerMixin:
    _listeners: list[CookieListener]

    def add_listener(self, fn: CookieListener) -> Callable[[], None]:
        self._listeners.append(fn)

        def _remove() -> None:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass

        return _remove

    def _fire(self, change: CookieChange) -> None:
        for fn in list(self._listeners):
            try:
                fn(change)
            except Exception as e:
                _log(f"cookie listener failed: {e}", level="ERROR")


class MemoryCookieJar(_ListenerMixin):
    """In-process jar; browser bridges push cookies in with ``set``."""

    def __init__(self, cookies: Iterable[Cookie] = ()) -> None:
        self._cookies: list[Cookie] = []
        self._listeners = []
        self._lock = threading.Lock()
        for c in cookies:
            self._cookies.append(c)

    def _key(self, c: Cookie) -> tuple[str, str, str]:
        return (c.domain.lower(), c.path or "/", c.name)

    def set(self, cookie: Cookie) -> None:
        with self._lock:
            k = self._key(cookie)
            self._cookies = [c for c in self._cookies if self._key(c) != k]
            self._cookies.append(cookie)
        self._fire(CookieChange(cookie=cookie, removed=False))

    def get_all(self, url: str) -> list[Cookie]:
        with self._lock:
            return [replace(c) for c in self._cookies if _cookie_applies(c, url)]

    def remove(self, url: str, name: str) -> None:
        removed: list[Cookie] = []
        with self._lock:
            keep: list[Cookie] = []
            for c in self._cookies:
                if c.name == name and _cookie_applies(c, url):
                    removed.append(c)
                else:
                    keep.append(c)
            self._cookies = keep
        for c in removed:
            self._fire(CookieChange(cookie=c, removed=True))


class FileCookieJar(_ListenerMixin):
    """Netscape ``cookies.txt`` jar (as exported by browser add-ons and curl)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._jar = http.cookiejar.MozillaCookieJar(str(self.path))
        self._listeners = []
        self._lock = threading.Lock()
        self._snapshot: dict[tuple[str, str, str], str] = {}
        if self.path.exists():
            self._jar.load(ignore_discard=True, ignore_expires=True)
        self._snapshot = self._index()

    @staticmethod
    def _convert(c: http.cookiejar.Cookie) -> Cookie:
        return Cookie(
            name=c.name,
            value=c.value or "",
            domain=c.domain,
            path=c.path or "/",
            secure=bool(c.secure),
            http_only=bool(c.has_nonstandard_attr("HTTPOnly")),
            expiration_date=float(c.expires) if c.expires else None,
        )

    def _index(self) -> dict[tuple[str, str, str], str]:
        return {(c.domain, c.path, c.name): c.value or "" for c in self._jar}

    def get_all(self, url: str) -> list[Cookie]:
        with self._lock:
            out = [self._convert(c) for c in self._jar]
        return [c for c in out if _cookie_applies(c, url)]

    def remove(self, url: str, name: str) -> None:
        with self._lock:
            victims = [c for c in self._jar if c.name == name and _cookie_applies(self._convert(c), url)]
            for c in victims:
                self._jar.clear(c.domain, c.path, c.name)
            self._jar.save(ignore_discard=True, ignore_expires=True)
            self._snapshot = self._index()
        for c in victims:
            self._fire(CookieChange(cookie=self._convert(c), removed=True))

    def reload(self) -> int:
        """Re-read the file and emit a change for every added/changed/removed cookie."""
        with self._lock:
            before = self._snapshot
            fresh = http.cookiejar.MozillaCookieJar(str(self.path))
            if self.path.exists():
                fresh.load(ignore_discard=True, ignore_expires=True)
            self._jar = fresh
            self._snapshot = self._index()
            by_key = {(c.domain, c.path, c.name): c for c in fresh}
        changes: list[CookieChange] = []
        for k, v in self._snapshot.items():
            if before.get(k) != v:
                changes.append(CookieChange(cookie=self._convert(by_key[k]), cause="file"))
        for k in before.keys() - self._snapshot.keys():
            changes.append(CookieChange(cookie=Cookie(name=k[2], value="", domain=k[0], path=k[1]), removed=True, cause="file"))
        for ch in changes:
            self._fire(ch)
        return len(changes)


# ── Accessor ─────────────────────────────────────────────────────────────
def is_cookie_valid(cookie: Cookie, *, now: float | None = None) -> bool:
    if cookie.expiration_date is None:
        return True
    ts = time.time() if now is None else now
    return ts < float(cookie.expiration_date)


def to_cookie_string(cookies: Iterable[Cookie], *, now: float | None = None) -> str:
    valid = [c for c in cookies if is_cookie_valid(c, now=now)]
    s = ";".join(f"{c.name}={c.value}" for c in valid)
    return s + ";" if s else ""


def parse_cookie_string(cookie_string: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for seg in (cookie_string or "").split(";"):
        seg = seg.strip()
        if not seg or "=" not in seg:
            continue
        name, value = seg.split("=", 1)
        if name and value:
            out[name] = value
    return out


def compare_cookie_strings(a: str | None, b: str | None) -> bool:
    if not a and not b:
        return True
    if not a or not b:
        return False
    return parse_cookie_string(a) == parse_cookie_string(b)


def format_cookie_size(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.2f} KB"
    return f"{n / (1024 * 1024):.2f} MB"


@dataclass
class CookieStats:
    count: int = 0
    valid: int = 0
    expired: int = 0
    cookies: list[Cookie] = field(default_factory=list)


class CookieAccessor:
    def __init__(self, jar: CookieJar, *, clock: Callable[[], float] = time.time) -> None:
        self.jar = jar
        self._clock = clock

    def list_cookies(self, url: str) -> list[Cookie]:
        try:
            return list(self.jar.get_all(url) or [])
        except Exception as e:
            raise CookieAccessError(f"读取Cookie失败: {e}") from e

    def _safe_list(self, url: str) -> list[Cookie]:
        try:
            return self.list_cookies(url)
        except CookieAccessError as e:
            _log(f"cookie lookup failed for {url}: {e}", level="WARN")
            return []

    def to_cookie_string(self, cookies: Iterable[Cookie]) -> str:
        return to_cookie_string(cookies, now=self._clock())

    def has_cookies(self, url: str) -> bool:
        return len(self._safe_list(url)) > 0

    def cookie_string(self, url: str) -> str:
        cookies = self._safe_list(url)
        if not cookies:
            raise CookieNotFoundError()
        s = self.to_cookie_string(cookies)
        if not s:
            raise CookieNotFoundError()
        return s

    def selected_cookie_string(self, url: str, names: Iterable[str]) -> str:
        wanted = set(names or [])
        cookies = self._safe_list(url)
        if not cookies:
            raise CookieNotFoundError()
        picked = [c for c in cookies if c.name in wanted]
        if not picked:
            raise NoCookiesFoundError()
        s = self.to_cookie_string(picked)
        if not s:
            raise NoCookiesFoundError("Cookie转换失败")
        return s

    def cookie_stats(self, url: str) -> CookieStats:
        cookies = self._safe_list(url)
        now = self._clock()
        valid = sum(1 for c in cookies if is_cookie_valid(c, now=now))
        return CookieStats(count=len(cookies), valid=valid, expired=len(cookies) - valid, cookies=cookies)

    def cookie_details(self, url: str) -> dict[str, Any]:
        cookies = self.list_cookies(url)
        size = sum(len(c.name) + len(c.value) for c in cookies)
        return {
            "url": url,
            "count": len(cookies),
            "cookies": [c.to_dict() for c in cookies],
            "cookieString": self.to_cookie_string(cookies),
            "totalSize": size,
            "totalSizeText": format_cookie_size(size),
        }

    def delete_all(self, url: str) -> int:
        cookies = self.list_cookies(url)
        deleted = 0
        for c in cookies:
            try:
                self.jar.remove(removal_url(c), c.name)
                deleted += 1
            except Exception as e:
                _log(f"delete cookie failed: {c.name}: {e}", level="WARN")
        _log(f"deleted {deleted} cookie(s) for {url}")
        return deleted


__all__ = [
    "Cookie",
    "CookieChange",
    "CookieJar",
    "MemoryCookieJar",
    "FileCookieJar",
    "CookieAccessor",
    "CookieStats",
    "to_cookie_string",
    "parse_cookie_string",
    "compare_cookie_strings",
    "is_cookie_valid",
    "extract_domain",
    "domain_matches",
]
