# services/messages.py
# QLSync - Message contract: action dispatcher shared by the HTTP routes and in-process callers
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Mapping

from ql_platform.errors import SITE_NOT_FOUND, QLSyncError, SiteNotFoundError
from ql_platform.orchestrator import SyncOrchestrator
from ql_platform.storage import StorageManager
from ql_platform.sync_log import SyncLog

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="API")


MASKED_VALUE = "••••••••"

# Core actions
SYNC_NOW = "syncNow"
SYNC_SITE = "syncSite"
SYNC_SELECTED_COOKIES = "syncSelectedCookies"
DELETE_COOKIES = "deleteCookies"
TEST_CONNECTION = "testConnection"
CHECK_COOKIE = "checkCookie"
GET_ENVS = "getEnvs"
ADD_ENV = "addEnv"
UPDATE_ENV = "updateEnv"
DELETE_ENV = "deleteEnv"
ENABLE_ENV = "enableEnv"
DISABLE_ENV = "disableEnv"
GET_LOGS = "getLogs"
CLEAR_LOGS = "clearLogs"

# Settings / maintenance actions
GET_CONFIG = "getConfig"
SAVE_CONFIG = "saveConfig"
GET_SITES = "getSites"
ADD_SITE = "addSite"
UPDATE_SITE = "updateSite"
DELETE_SITE = "deleteSite"
EXPORT_CONFIG = "exportConfig"
IMPORT_CONFIG = "importConfig"
SET_WIZARD_COMPLETED = "setWizardCompleted"
GET_COOKIE_DETAILS = "getCookieDetails"
EXPORT_PANEL = "exportPanel"
IMPORT_ENVS = "importEnvs"
CLEAR_SITE_LOGS = "clearSiteLogs"

SITE_REQUIRED = ("name", "url", "envName")

Handler = Callable[[Mapping[str, Any]], dict[str, Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _fail(message: str) -> dict[str, Any]:
    return {"success": False, "message": message, "error": message}


def _blank(v: Any) -> bool:
    s = ("" if v is None else str(v)).strip()
    return s in {"", MASKED_VALUE}


class MessageHandler:
    """Dispatch ``{"action": ..., ...}`` requests to the sync engine.

    ``handle`` never raises: every failure becomes ``{"success": False, "message": ...}``.
    ``submit`` runs ``handle`` on a worker pool and resolves the future exactly once;
    there is no built-in timeout, callers wait with their own.
    """

    def __init__(
        self,
        *,
        storage: StorageManager,
        orchestrator: SyncOrchestrator,
        client: Any,
        sync_log: SyncLog,
        max_workers: int = 4,
    ) -> None:
        self.storage = storage
        self.orchestrator = orchestrator
        self.client = client
        self.sync_log = sync_log
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="qlsync-msg")
        self._actions: dict[str, Handler] = {
            SYNC_NOW: self._sync_now,
            SYNC_SITE: self._sync_site,
            SYNC_SELECTED_COOKIES: self._sync_selected,
            DELETE_COOKIES: self._delete_cookies,
            TEST_CONNECTION: self._test_connection,
            CHECK_COOKIE: self._check_cookie,
            GET_ENVS: self._get_envs,
            ADD_ENV: self._add_env,
            UPDATE_ENV: self._update_env,
            DELETE_ENV: self._delete_env,
            ENABLE_ENV: self._enable_env,
            DISABLE_ENV: self._disable_env,
            GET_LOGS: self._get_logs,
            CLEAR_LOGS: self._clear_logs,
            GET_CONFIG: self._get_config,
            SAVE_CONFIG: self._save_config,
            GET_SITES: self._get_sites,
            ADD_SITE: self._add_site,
            UPDATE_SITE: self._update_site,
            DELETE_SITE: self._delete_site,
            EXPORT_CONFIG: self._export_config,
            IMPORT_CONFIG: self._import_config,
            SET_WIZARD_COMPLETED: self._set_wizard,
            GET_COOKIE_DETAILS: self._cookie_details,
            EXPORT_PANEL: self._export_panel,
            IMPORT_ENVS: self._import_envs,
            CLEAR_SITE_LOGS: self._clear_site_logs,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    def handle(self, request: Mapping[str, Any]) -> dict[str, Any]:
        req = dict(request or {})
        action = str(req.get("action") or "")
        fn = self._actions.get(action)
        if fn is None:
            _log(f"unknown action: {action!r}", level="WARN")
            return _fail(f"未知的操作: {action}")
        _log(f"message: {action}", level="DEBUG")
        try:
            return fn(req)
        except QLSyncError as e:
            _log(f"{action} failed: {e.message}", level="WARN")
            return _fail(e.message)
        except Exception as e:
            _log(f"{action} crashed: {e}", level="ERROR")
            return _fail(str(e) or e.__class__.__name__)

    def submit(self, request: Mapping[str, Any]) -> "Future[dict[str, Any]]":
        return self._executor.submit(self.handle, request)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Helpers ----------------------------------------------------------------
    def _site(self, req: Mapping[str, Any]) -> dict[str, Any]:
        site = self.storage.get_site(str(req.get("siteId") or ""))
        if site is None:
            raise SiteNotFoundError()
        return site

    # Sync -------------------------------------------------------------------
    def _sync_now(self, req: Mapping[str, Any]) -> dict[str, Any]:
        res = self.orchestrator.sync_all()
        return {**res.to_dict(), "timestamp": _now_ms()}

    def _sync_site(self, req: Mapping[str, Any]) -> dict[str, Any]:
        out = self.orchestrator.sync_site_by_id(str(req.get("siteId") or ""))
        if out is None:
            return _fail(SITE_NOT_FOUND)
        return {"success": out.success, "message": out.message, "timestamp": _now_ms()}

    def _sync_selected(self, req: Mapping[str, Any]) -> dict[str, Any]:
        names = req.get("cookieNames") or []
        out = self.orchestrator.sync_selected_cookies(str(req.get("siteId") or ""), list(names))
        return out.to_dict()

    def _delete_cookies(self, req: Mapping[str, Any]) -> dict[str, Any]:
        return self.orchestrator.delete_site_cookies(str(req.get("siteId") or ""))

    def _check_cookie(self, req: Mapping[str, Any]) -> dict[str, Any]:
        return self.orchestrator.check_site_cookies(self._site(req))

    def _cookie_details(self, req: Mapping[str, Any]) -> dict[str, Any]:
        url = req.get("url") or self._site(req).get("url")
        return {"success": True, "data": self.orchestrator.accessor.cookie_details(str(url))}

    # Panel ------------------------------------------------------------------
    def _test_connection(self, req: Mapping[str, Any]) -> dict[str, Any]:
        cfg = req.get("config")
        if isinstance(cfg, Mapping):
            cfg = dict(cfg)
            if _blank(cfg.get("clientSecret")):
                cfg["clientSecret"] = self.storage.get_config().get("clientSecret") or ""
            return self.client.test_connection(cfg)
        return self.client.test_connection()

    def _get_envs(self, req: Mapping[str, Any]) -> dict[str, Any]:
        use_cache = req.get("useCache")
        envs = self.client.list_variables(use_cache=True if use_cache is None else bool(use_cache))
        return {"success": True, "data": [v.to_api() for v in envs]}

    def _add_env(self, req: Mapping[str, Any]) -> dict[str, Any]:
        data = dict(req.get("data") or {})
        if not data.get("name") or data.get("value") is None:
            return _fail("缺少必需字段: name, value")
        var = self.client.create_variable(str(data["name"]), str(data["value"]), str(data.get("remarks") or ""))
        return {"success": True, "data": var.to_api(), "message": "环境变量已添加"}

    def _update_env(self, req: Mapping[str, Any]) -> dict[str, Any]:
        data = dict(req.get("data") or {})
        if data.get("id") is None and data.get("_id") is None:
            return _fail("缺少必需字段: id")
        var = self.client.update_variable(data)
        return {"success": True, "data": var.to_api(), "message": "环境变量已更新"}

    def _ids(self, req: Mapping[str, Any]) -> list[Any]:
        ids = req.get("ids")
        if not isinstance(ids, (list, tuple)) or not ids:
            raise QLSyncError("缺少必需字段: ids")
        return list(ids)

    def _delete_env(self, req: Mapping[str, Any]) -> dict[str, Any]:
        self.client.delete_variables(self._ids(req))
        return {"success": True, "message": "环境变量已删除"}

    def _enable_env(self, req: Mapping[str, Any]) -> dict[str, Any]:
        self.client.enable_variables(self._ids(req))
        return {"success": True, "message": "环境变量已启用"}

    def _disable_env(self, req: Mapping[str, Any]) -> dict[str, Any]:
        self.client.disable_variables(self._ids(req))
        return {"success": True, "message": "环境变量已禁用"}

    def _export_panel(self, req: Mapping[str, Any]) -> dict[str, Any]:
        data = self.client.export_panel(
            include_envs=bool(req.get("includeEnvs", True)),
            include_subscriptions=bool(req.get("includeSubscriptions", True)),
        )
        return {"success": True, "data": data}

    def _import_envs(self, req: Mapping[str, Any]) -> dict[str, Any]:
        items = req.get("variables")
        if not isinstance(items, (list, tuple)):
            return _fail("缺少必需字段: variables")
        res = self.client.import_variables([v for v in items if isinstance(v, Mapping)], overwrite=bool(req.get("overwrite")))
        msg = f"导入完成: 成功 {len(res['success'])}, 失败 {len(res['failed'])}, 跳过 {len(res['skipped'])}"
        return {"success": True, "data": res, "message": msg}

    # Logs -------------------------------------------------------------------
    def _get_logs(self, req: Mapping[str, Any]) -> dict[str, Any]:
        opts = req.get("options") if isinstance(req.get("options"), Mapping) else {}
        return {"success": True, "logs": self.sync_log.get_logs(opts), "stats": self.sync_log.stats()}

    def _clear_logs(self, req: Mapping[str, Any]) -> dict[str, Any]:
        self.sync_log.clear_all()
        return {"success": True, "message": "日志已清除"}

    def _clear_site_logs(self, req: Mapping[str, Any]) -> dict[str, Any]:
        n = self.sync_log.clear_site(str(req.get("siteId") or ""))
        return {"success": True, "message": f"已清除 {n} 条日志", "removed": n}

    # Settings ---------------------------------------------------------------
    def _get_config(self, req: Mapping[str, Any]) -> dict[str, Any]:
        cfg = self.storage.get_config()
        has_secret = bool(cfg.get("clientSecret"))
        cfg["clientSecret"] = MASKED_VALUE if has_secret else ""
        return {
            "success": True,
            "config": cfg,
            "hasClientSecret": has_secret,
            "wizardCompleted": self.storage.get_wizard_completed(),
        }

    def _save_config(self, req: Mapping[str, Any]) -> dict[str, Any]:
        incoming = dict(req.get("config") or {})
        current = self.storage.get_config()
        merged = {**current, **incoming}
        if _blank(incoming.get("clientSecret")):
            merged["clientSecret"] = current.get("clientSecret") or ""
        self.storage.save_config(merged)
        if any(merged.get(k) != current.get(k) for k in ("qlUrl", "clientId", "clientSecret")):
            self.client.clear_token()
        return {"success": True, "message": "配置已保存"}

    def _get_sites(self, req: Mapping[str, Any]) -> dict[str, Any]:
        return {"success": True, "data": self.storage.get_sites()}

    def _add_site(self, req: Mapping[str, Any]) -> dict[str, Any]:
        data = dict(req.get("site") or req.get("data") or {})
        missing = [k for k in SITE_REQUIRED if not str(data.get(k) or "").strip()]
        if missing:
            return _fail(f"缺少必需字段: {', '.join(missing)}")
        site = self.storage.add_site(data)
        return {"success": True, "data": site, "message": "网站配置已添加"}

    def _update_site(self, req: Mapping[str, Any]) -> dict[str, Any]:
        updates = dict(req.get("updates") or req.get("data") or {})
        site = self.storage.update_site(str(req.get("siteId") or ""), updates)
        if site is None:
            return _fail(SITE_NOT_FOUND)
        return {"success": True, "data": site, "message": "网站配置已更新"}

    def _delete_site(self, req: Mapping[str, Any]) -> dict[str, Any]:
        if not self.storage.delete_site(str(req.get("siteId") or "")):
            return _fail(SITE_NOT_FOUND)
        return {"success": True, "message": "网站配置已删除"}

    def _export_config(self, req: Mapping[str, Any]) -> dict[str, Any]:
        return {"success": True, "data": self.storage.export_config(), "message": "配置已导出"}

    def _import_config(self, req: Mapping[str, Any]) -> dict[str, Any]:
        data = req.get("data")
        res = self.storage.import_config(data if isinstance(data, Mapping) else {}, merge=bool(req.get("merge")))
        return res

    def _set_wizard(self, req: Mapping[str, Any]) -> dict[str, Any]:
        done = bool(req.get("completed", True))
        self.storage.set_wizard_completed(done)
        return {"success": True, "wizardCompleted": done}


__all__ = ["MessageHandler", "MASKED_VALUE"]
