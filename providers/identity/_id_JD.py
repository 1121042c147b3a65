# providers/identity/_id_JD.py
# QLSync - JD identity matcher (pt_key / pt_pin validation, JD_COOKIE matching)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any, Iterable

import requests

from ql_platform.cache import KeyedTTLCache

from ..panel.qinglong import RemoteVariable
from ._id_base import (
    IdentityMatch,
    IdentityValidation,
    MatcherManifest,
    extract_field,
    get_cookie_value,
)

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="JD")


ROOT_DOMAIN = "jd.com"
VARIABLE_NAME = "JD_COOKIE"
FIELD_KEY = "pt_key"
FIELD_PIN = "pt_pin"

API_URL = "https://me-api.jd.com/user_new/info/GetJDUserInfoUnion"
REFERER = "https://home.m.jd.com/"
UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 13_2_3 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/13.0.3 Mobile/15E148 Safari/604.1"
)
CACHE_TTL = 600.0


class JDMatcher:
    name = "JD"

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        cache: KeyedTTLCache[IdentityValidation] | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.session = session or requests.Session()
        self.cache: KeyedTTLCache[IdentityValidation] = cache if cache is not None else KeyedTTLCache(CACHE_TTL)
        self.timeout = float(timeout)

    def manifest(self) -> MatcherManifest:
        return MatcherManifest(
            name=self.name,
            label="京东",
            root_domain=ROOT_DOMAIN,
            variable_name=VARIABLE_NAME,
            fields=[FIELD_KEY, FIELD_PIN],
        )

    def is_recognized(self, domain: str) -> bool:
        if not domain:
            return False
        d = domain.lower()
        if d.startswith("www."):
            d = d[4:]
        return d == ROOT_DOMAIN or d.endswith("." + ROOT_DOMAIN)

    def extract_pin(self, cookie_string: str | None) -> str | None:
        return extract_field(cookie_string, FIELD_PIN)

    def validate_identity(self, cookie_string: str) -> IdentityValidation:
        try:
            key = get_cookie_value(cookie_string, FIELD_KEY)
            pin = self.extract_pin(cookie_string)
            if not key or not pin:
                _log("cookie lacks pt_key or pt_pin", level="WARN")
                return IdentityValidation(valid=False, reason="Cookie中缺少必要字段（pt_key或pt_pin）")

            cache_key = f"validate:{pin}"
            hit = self.cache.get(cache_key)
            if hit is not None:
                _log("using cached validation", level="DEBUG")
                return hit

            headers = {"Cookie": cookie_string, "Referer": REFERER, "User-Agent": UA}
            resp = self.session.get(API_URL, headers=headers, timeout=self.timeout)
            if not resp.ok:
                _log(f"user-info request failed: HTTP {resp.status_code}", level="ERROR")
                return IdentityValidation(valid=False, reason=f"API请求失败: {resp.status_code}")

            data: Any = resp.json()
            retcode = data.get("retcode") if isinstance(data, dict) else None
            if retcode not in (0, "0"):
                _log(f"validation failed: retcode={retcode}", level="WARN")
                return IdentityValidation(valid=False, reason=f"验证失败: {retcode}")

            base = ((data.get("data") or {}).get("userInfo") or {}).get("baseInfo") or {}
            result = IdentityValidation(
                valid=True,
                reason="验证成功",
                identity={
                    "nickname": base.get("nickname") or "",
                    "headImageUrl": base.get("headImageUrl") or "",
                    "ptPin": pin,
                },
            )
            self.cache.set(cache_key, result)
            _log(f"cookie valid for user {result.identity['nickname']!r}")
            return result
        except Exception as e:
            _log(f"validation error: {e}", level="ERROR")
            return IdentityValidation(valid=False, reason=f"验证过程出错: {e}")

    def match_remote_variable(self, variables: Iterable[RemoteVariable], cookie_string: str) -> IdentityMatch:
        try:
            pin = self.extract_pin(cookie_string)
            if not pin:
                return IdentityMatch(matched=False, reason="Cookie中未找到pt_pin")

            candidates = [v for v in variables if v.name == VARIABLE_NAME]
            if not candidates:
                return IdentityMatch(matched=False, reason="青龙面板中未找到JD_COOKIE环境变量")

            for v in candidates:
                if self.extract_pin(v.value) == pin:
                    _log(f"matched {VARIABLE_NAME} id={v.id}")
                    return IdentityMatch(matched=True, variable=v)

            return IdentityMatch(matched=False, reason=f"未找到pt_pin为 {pin} 的环境变量")
        except Exception as e:
            _log(f"match error: {e}", level="ERROR")
            return IdentityMatch(matched=False, reason=f"匹配过程出错: {e}")


PROVIDER = JDMatcher()

__all__ = ["JDMatcher", "PROVIDER", "VARIABLE_NAME", "API_URL", "REFERER", "UA"]
