# providers/_http_common.py
# QLSync - shared HTTP helpers (session, JSON decoding, fixed-delay retries)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import time
from typing import Any, Callable

import requests

from ql_platform.errors import TransportError

__all__ = ["build_session", "safe_json", "request_with_retries", "UA"]

UA = "QLSync/1.0"

SleepFn = Callable[[float], None]


def build_session(user_agent: str = UA) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return s


def safe_json(resp: requests.Response) -> Any:
    try:
        if not (resp.text or "").strip():
            return {}
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            return resp.json()
        return json.loads(resp.text)
    except Exception:
        return {}


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 15.0,
    max_retries: int = 3,
    delay: float = 1.0,
    sleep: SleepFn = time.sleep,
    **kwargs: Any,
) -> requests.Response:
    """Send a request, retrying on transport errors and non-2xx statuses.

    Attempts are separated by a fixed ``delay``. The last attempt's response is
    returned as-is (even when it is not 2xx); a transport error on the last
    attempt is raised as TransportError.
    """
    attempts = max(1, int(max_retries))
    last_exc: Exception | None = None
    for i in range(attempts):
        final = i == attempts - 1
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            last_exc = e
            if final:
                break
            sleep(delay)
            continue
        if not (200 <= resp.status_code < 300) and not final:
            sleep(delay)
            continue
        return resp
    raise TransportError(f"网络请求失败: {method} {url}: {last_exc}")
