# ql_platform/orchestrator.py
# QLSync - Sync orchestrator: per-site decision engine, batch sync, cookie checks
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from .cookies import CookieAccessor, extract_domain
from .errors import (
    SITE_DISABLED,
    ConfigMissingError,
    IdentityInvalidError,
    QLSyncError,
    SiteNotFoundError,
)
from .storage import StorageManager
from .sync_log import SyncLog

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="SYNC")


__all__ = ["SyncOrchestrator", "SyncOutcome", "BatchOutcome", "SYNC_SUCCESS", "NO_ENABLED_SITES"]

SYNC_SUCCESS = "Cookie同步成功"
NO_ENABLED_SITES = "没有启用的网站"
REMARKS_PREFIX = "由Cookie同步助手更新于"

Notifier = Callable[[str, str], None]


def _log_notifier(title: str, message: str) -> None:
    _log(f"{title}: {message}", level="ERROR")


def _err_text(e: BaseException) -> str:
    return e.message if isinstance(e, QLSyncError) else (str(e) or e.__class__.__name__)


@dataclass
class SyncOutcome:
    success: bool
    message: str
    site_id: str | None = None
    site_name: str | None = None
    synced_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.synced_count is not None:
            out["syncedCount"] = self.synced_count
        return out


@dataclass
class BatchOutcome:
    success: bool
    message: str
    results: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "results": list(self.results)}


@dataclass
class SyncOrchestrator:
    storage: StorageManager
    accessor: CookieAccessor
    client: Any  # providers.panel.QingLongClient
    registry: Any  # providers.identity.registry.MatcherRegistry
    sync_log: SyncLog
    notifier: Notifier = _log_notifier
    sleep: Callable[[float], None] = time.sleep
    batch_delay: float = 1.0
    clock: Callable[[], float] = time.time

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _remarks(self, *, matched: bool = False, selected: int | None = None) -> str:
        stamp = datetime.fromtimestamp(self.clock()).strftime("%Y/%m/%d %H:%M:%S")
        tags: list[str] = []
        if selected is not None:
            tags.append(f"选中{selected}个Cookie")
        if matched:
            tags.append("智能匹配")
        tail = f" ({', '.join(tags)})" if tags else ""
        return f"{REMARKS_PREFIX} {stamp}{tail}"

    # Decision engine ---------------------------------------------------------
    def _cookie_string(self, site: Mapping[str, Any], names: list[str] | None) -> str:
        url = str(site.get("url") or "")
        if names is not None:
            return self.accessor.selected_cookie_string(url, names)
        return self.accessor.cookie_string(url)

    def _write(self, site: Mapping[str, Any], names: list[str] | None) -> str:
        url = str(site.get("url") or "")
        cookie_string = self._cookie_string(site, names)
        selected = len(names) if names is not None else None
        _log(f"{site.get('name')}: cookie string ready ({len(cookie_string)} chars)", level="DEBUG")

        matcher = self.registry.for_url(url)
        if not matcher.is_recognized(extract_domain(url)):
            res = self.client.upsert_variable(site.get("envName") or "", cookie_string, self._remarks(selected=selected))
            return res.action

        man = matcher.manifest()
        label = getattr(man, "label", None) or matcher.name
        validation = matcher.validate_identity(cookie_string)
        if not validation.valid:
            raise IdentityInvalidError(f"{label}Cookie无效: {validation.reason}")
        _log(f"{site.get('name')}: identity ok ({(validation.identity or {}).get('nickname', '')})")

        variables = self.client.list_variables()
        match = matcher.match_remote_variable(variables, cookie_string)
        if match.matched and match.variable is not None:
            _log(f"{site.get('name')}: updating matched variable id={match.variable.id}")
            patched = replace(
                match.variable,
                value=cookie_string,
                remarks=self._remarks(matched=True, selected=selected),
                extra=dict(match.variable.extra),
            )
            self.client.update_variable(patched)
            return "matched"

        _log(f"{site.get('name')}: no identity match ({match.reason}), falling back to {site.get('envName')}")
        res = self.client.upsert_variable(site.get("envName") or "", cookie_string, self._remarks(selected=selected))
        return res.action

    # Outcome recording -------------------------------------------------------
    def _mark(self, site_id: str, status: str) -> None:
        self.storage.update_site(site_id, {"lastSync": self._now_ms(), "lastStatus": status})

    def _record(self, site_id: str | None, site: Mapping[str, Any] | None, status: str, message: str) -> None:
        # bookkeeping failures are logged; the sync outcome stands
        try:
            if site_id:
                self._mark(site_id, status)
            if site is not None:
                sid, name = str(site.get("id")), str(site.get("name") or "")
                if status == "success":
                    self.sync_log.success(sid, name, message)
                else:
                    self.sync_log.error(sid, name, message)
        except Exception as e:
            _log(f"recording {status} for {site_id or '?'} failed: {e}", level="ERROR")

    def _fail(self, site_id: str | None, site: Mapping[str, Any] | None, e: BaseException, title: str) -> SyncOutcome:
        msg = _err_text(e)
        name = str((site or {}).get("name") or site_id or "")
        _log(f"{name}: sync failed: {msg}", level="ERROR")
        self._record(site_id, site, "failed", msg)
        try:
            self.notifier(title, msg)
        except Exception as ne:
            _log(f"notifier failed: {ne}", level="WARN")
        return SyncOutcome(False, msg, site_id=site_id, site_name=(site or {}).get("name"))

    def _attempt(self, site: Mapping[str, Any], names: list[str] | None, title: str) -> SyncOutcome:
        site_id = str(site.get("id") or "")
        try:
            action = self._write(site, names)
        except Exception as e:
            return self._fail(site_id, site, e, title)

        if names is None:
            self._record(site_id, site, "success", SYNC_SUCCESS)
            _log(f"{site.get('name')}: sync ok ({action})", level="SUCCESS")
            return SyncOutcome(True, SYNC_SUCCESS, site_id=site_id, site_name=site.get("name"))

        n = len(names)
        self._record(site_id, site, "success", f"同步选中Cookie成功 ({n}个)")
        _log(f"{site.get('name')}: selected sync ok ({n} cookie(s), {action})", level="SUCCESS")
        return SyncOutcome(True, f"同步成功，已同步 {n} 个Cookie", site_id=site_id, site_name=site.get("name"), synced_count=n)

    # Public operations -------------------------------------------------------
    def sync_site(self, site: Mapping[str, Any], cookie_names: Iterable[str] | None = None) -> SyncOutcome:
        names = list(cookie_names) if cookie_names is not None else None
        title = f"{site.get('name')} 同步失败" if names is None else "选中Cookie同步失败"
        _log(f"sync site: {site.get('name')}")
        return self._attempt(site, names, title)

    def sync_site_by_id(self, site_id: str) -> SyncOutcome | None:
        site = self.storage.get_site(site_id)
        if site is None:
            return None
        return self.sync_site(site)

    def sync_selected_cookies(self, site_id: str, cookie_names: Iterable[str]) -> SyncOutcome:
        names = [str(n) for n in (cookie_names or [])]
        title = "选中Cookie同步失败"
        site = self.storage.get_site(site_id)
        try:
            if site is None:
                raise SiteNotFoundError()
            if not site.get("enabled"):
                raise QLSyncError(SITE_DISABLED)
            if not self.storage.connection_complete():
                raise ConfigMissingError()
        except QLSyncError as e:
            return self._fail(site_id, site, e, title)
        _log(f"sync selected cookies: {site.get('name')} [{', '.join(names)}]")
        return self._attempt(site, names, title)

    def sync_all(self) -> BatchOutcome:
        sites = [s for s in self.storage.get_sites() if s.get("enabled") and s.get("autoSync")]
        if not sites:
            _log("batch: no enabled sites")
            return BatchOutcome(True, NO_ENABLED_SITES, [])

        _log(f"batch: syncing {len(sites)} site(s)")
        results: list[dict[str, Any]] = []
        ok = failed = 0
        for i, site in enumerate(sites):
            if i > 0:
                self.sleep(self.batch_delay)
            try:
                out = self.sync_site(site)
            except Exception as e:
                _log(f"{site.get('name')}: unexpected sync error: {e}", level="ERROR")
                out = SyncOutcome(False, _err_text(e), site_id=site.get("id"), site_name=site.get("name"))
            results.append({"siteId": site.get("id"), "siteName": site.get("name"), **out.to_dict()})
            if out.success:
                ok += 1
            else:
                failed += 1

        msg = f"成功: {ok}, 失败: {failed}"
        _log(f"batch done: {msg}", level="SUCCESS" if failed == 0 else "WARN")
        return BatchOutcome(failed == 0, msg, results)

    def check_site_cookies(self, site: Mapping[str, Any]) -> dict[str, Any]:
        url = str(site.get("url") or "")
        try:
            stats = self.accessor.cookie_stats(url)
            if stats.count == 0:
                return {
                    "success": False,
                    "hasCookies": False,
                    "cookieCount": 0,
                    "message": "未找到Cookie，请先登录该网站",
                }

            base: dict[str, Any] = {
                "hasCookies": True,
                "cookieCount": stats.count,
                "validCount": stats.valid,
                "expiredCount": stats.expired,
            }
            matcher = self.registry.for_url(url)
            if matcher.is_recognized(extract_domain(url)):
                man = matcher.manifest()
                label = getattr(man, "label", None) or matcher.name
                family = str(matcher.name)
                validation = matcher.validate_identity(self.accessor.to_cookie_string(stats.cookies))
                base[f"is{family.upper()}"] = True
                base[f"{family.lower()}Validation"] = validation.to_dict()
                if not validation.valid:
                    base["validCount"] = 0
                    return {"success": False, **base, "message": f"{label}Cookie验证失败: {validation.reason}"}
                nickname = (validation.identity or {}).get("nickname", "")
                return {"success": True, **base, "message": f"{label}Cookie有效 (用户: {nickname})"}

            if stats.expired > 0:
                msg = f"找到{stats.count}个Cookie，其中{stats.expired}个已过期"
            else:
                msg = f"找到{stats.count}个有效Cookie"
            return {"success": True, **base, "message": msg}
        except Exception as e:
            _log(f"cookie check failed for {url}: {e}", level="ERROR")
            return {"success": False, "hasCookies": False, "message": _err_text(e) or "检测Cookie失败"}

    def delete_site_cookies(self, site_id: str) -> dict[str, Any]:
        site = self.storage.get_site(site_id)
        try:
            if site is None:
                raise SiteNotFoundError()
            deleted = self.accessor.delete_all(str(site.get("url") or ""))
        except Exception as e:
            msg = _err_text(e)
            _log(f"delete cookies failed: {msg}", level="ERROR")
            if site is not None:
                self.sync_log.error(str(site.get("id")), str(site.get("name") or ""), msg)
            try:
                self.notifier("删除Cookie失败", msg)
            except Exception as ne:
                _log(f"notifier failed: {ne}", level="WARN")
            return {"success": False, "message": msg}

        self.sync_log.success(str(site.get("id")), str(site.get("name") or ""), f"删除Cookie成功 ({deleted}个)")
        return {"success": True, "message": f"删除成功，已删除 {deleted} 个Cookie", "deletedCount": deleted}
