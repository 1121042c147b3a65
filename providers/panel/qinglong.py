# providers/panel/qinglong.py
# QLSync - QingLong panel client (auth token, environment variables)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol

import requests

from ql_platform.cache import TTLCache
from ql_platform.errors import (
    API_ERROR,
    TOKEN_ERROR,
    ApiError,
    AuthError,
    ConfigMissingError,
    QLSyncError,
)
from ql_platform.vault import looks_encrypted

from .._http_common import build_session, request_with_retries, safe_json

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="PANEL")


__VERSION__ = "1.0.0"

PATH_TOKEN = "/open/auth/token"
PATH_ENVS = "/open/envs"
PATH_ENVS_ENABLE = "/open/envs/enable"
PATH_ENVS_DISABLE = "/open/envs/disable"
PATH_SUBSCRIPTIONS = "/open/subscriptions"

STATUS_ENABLED = 0
STATUS_DISABLED = 1

_KNOWN = ("id", "_id", "name", "value", "remarks", "status")


@dataclass
class RemoteVariable:
    id: Any
    name: str
    value: str = ""
    remarks: str = ""
    status: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    id_key: str = "id"

    @classmethod
    def from_api(cls, d: Mapping[str, Any]) -> "RemoteVariable":
        id_key = "id" if d.get("id") is not None else ("_id" if d.get("_id") is not None else "id")
        status = d.get("status")
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            pass
        return cls(
            id=d.get(id_key),
            name=str(d.get("name") or ""),
            value=str(d.get("value") or ""),
            remarks=str(d.get("remarks") or ""),
            status=status,
            extra={k: v for k, v in d.items() if k not in _KNOWN},
            id_key=id_key,
        )

    @property
    def enabled(self) -> bool:
        return self.status != STATUS_DISABLED

    def to_api(self) -> dict[str, Any]:
        out = dict(self.extra)
        out[self.id_key] = self.id
        out["name"] = self.name
        out["value"] = self.value
        out["remarks"] = self.remarks or ""
        if self.status is not None:
            out["status"] = self.status
        return out


@dataclass
class UpsertResult:
    action: str  # "created" | "updated"
    variable: RemoteVariable


class VariableCache(Protocol):
    def get(self) -> list[dict[str, Any]] | None: ...
    def set(self, value: list[dict[str, Any]]) -> Any: ...
    def clear(self) -> None: ...


ConnectionFn = Callable[[], Mapping[str, Any]]


def connection_complete(cfg: Mapping[str, Any]) -> bool:
    return bool(str(cfg.get("qlUrl") or "").strip() and cfg.get("clientId") and cfg.get("clientSecret"))


class QingLongClient:
    def __init__(
        self,
        connection: ConnectionFn,
        *,
        session: requests.Session | None = None,
        env_cache: VariableCache | None = None,
        token_ttl: float = 3600.0,
        env_cache_ttl: float = 300.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        decrypt: Callable[[str], str] | None = None,
    ) -> None:
        self._connection = connection
        self.session = session or build_session()
        self._token: TTLCache[str] = TTLCache(token_ttl, clock=clock)
        self.env_cache: VariableCache = env_cache if env_cache is not None else TTLCache(env_cache_ttl, clock=clock)
        self.max_retries = int(max_retries)
        self.retry_delay = float(retry_delay)
        self.timeout = float(timeout)
        self._sleep = sleep
        self._decrypt = decrypt

    # Transport --------------------------------------------------------------
    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return request_with_retries(
            self.session,
            method,
            url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            delay=self.retry_delay,
            sleep=self._sleep,
            **kwargs,
        )

    @staticmethod
    def _base(cfg: Mapping[str, Any]) -> str:
        return str(cfg.get("qlUrl") or "").strip().rstrip("/")

    def _plain_secret(self, secret: str) -> str:
        if self._decrypt and looks_encrypted(secret):
            try:
                return self._decrypt(secret)
            except QLSyncError as e:
                _log(f"client secret not decryptable, using as given: {e}", level="WARN")
        return secret

    # Auth -------------------------------------------------------------------
    def _fetch_token(self, cfg: Mapping[str, Any]) -> str:
        if not connection_complete(cfg):
            raise ConfigMissingError()
        url = f"{self._base(cfg)}{PATH_TOKEN}"
        params = {"client_id": cfg.get("clientId"), "client_secret": self._plain_secret(str(cfg.get("clientSecret")))}
        resp = self._request("GET", url, params=params)
        data = safe_json(resp)
        if not isinstance(data, dict):
            raise AuthError()
        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        token = payload.get("token")
        if data.get("code") == 200 and token:
            return str(token)
        raise AuthError(str(data.get("message") or TOKEN_ERROR))

    def _issue_token(self) -> str:
        token = self._fetch_token(self._connection())
        _log(f"token issued ({token[:6]}...)", level="DEBUG")
        return token

    def authenticate(self, force_refresh: bool = False) -> str:
        return self._token.get_or_refresh(self._issue_token, force=force_refresh)

    def clear_token(self) -> None:
        self._token.clear()

    def expire_token(self) -> None:
        self._token.expire()

    def test_connection(self, connection: Mapping[str, Any] | None = None) -> dict[str, Any]:
        try:
            token = self._fetch_token(connection) if connection is not None else self.authenticate(force_refresh=True)
        except QLSyncError as e:
            _log(f"connection test failed: {e}", level="WARN")
            return {"success": False, "message": e.message}
        return {"success": True, "message": "连接成功", "token": token[:10] + "..."}

    # Authorized calls -------------------------------------------------------
    def _call(self, method: str, path: str, *, json_body: Any = None) -> dict[str, Any]:
        cfg = self._connection()
        token = self.authenticate()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        kwargs: dict[str, Any] = {"headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body
        resp = self._request(method, f"{self._base(cfg)}{path}", **kwargs)
        data = safe_json(resp)
        if not isinstance(data, dict) or data.get("code") != 200:
            msg = (data.get("message") if isinstance(data, dict) else None) or f"{API_ERROR} (HTTP {resp.status_code})"
            _log(f"{method} {path} failed: {msg}", level="ERROR")
            raise ApiError(str(msg))
        return data

    # Variables --------------------------------------------------------------
    def list_variables(self, use_cache: bool = True) -> list[RemoteVariable]:
        if use_cache:
            cached = self.env_cache.get()
            if cached is not None:
                return [RemoteVariable.from_api(d) for d in cached]

        data = self._call("GET", PATH_ENVS)
        raw = data.get("data")
        if raw is None:
            raise ApiError(str(data.get("message") or API_ERROR))
        envs = [d for d in raw if isinstance(d, dict)] if isinstance(raw, list) else []
        self.env_cache.set(envs)
        _log(f"fetched {len(envs)} variable(s)", level="DEBUG")
        return [RemoteVariable.from_api(d) for d in envs]

    def find_variable(self, name: str) -> RemoteVariable | None:
        for v in self.list_variables():
            if v.name == name:
                return v
        return None

    def create_variable(self, name: str, value: str, remarks: str = "") -> RemoteVariable:
        payload = [{"name": name, "value": value, "remarks": remarks or ""}]
        data = self._call("POST", PATH_ENVS, json_body=payload)
        self.env_cache.clear()
        created = data.get("data")
        if isinstance(created, list) and created and isinstance(created[0], dict):
            created = created[0]
        if isinstance(created, dict):
            return RemoteVariable.from_api(created)
        return RemoteVariable(id=None, name=name, value=value, remarks=remarks or "")

    def update_variable(self, variable: RemoteVariable | Mapping[str, Any]) -> RemoteVariable:
        var = variable if isinstance(variable, RemoteVariable) else RemoteVariable.from_api(variable)
        data = self._call("PUT", PATH_ENVS, json_body=var.to_api())
        self.env_cache.clear()
        updated = data.get("data")
        if isinstance(updated, dict):
            return RemoteVariable.from_api(updated)
        return var

    def delete_variables(self, ids: Iterable[Any]) -> None:
        self._call("DELETE", PATH_ENVS, json_body=list(ids))
        self.env_cache.clear()

    def enable_variables(self, ids: Iterable[Any]) -> None:
        self._call("PUT", PATH_ENVS_ENABLE, json_body=list(ids))
        self.env_cache.clear()

    def disable_variables(self, ids: Iterable[Any]) -> None:
        self._call("PUT", PATH_ENVS_DISABLE, json_body=list(ids))
        self.env_cache.clear()

    def upsert_variable(self, name: str, value: str, remarks: str = "") -> UpsertResult:
        existing = self.find_variable(name)
        if existing is not None:
            patched = RemoteVariable(
                id=existing.id,
                name=name,
                value=value,
                remarks=remarks or existing.remarks,
                status=existing.status,
                extra=dict(existing.extra),
                id_key=existing.id_key,
            )
            _log(f"upsert {name}: updating id={existing.id}")
            return UpsertResult("updated", self.update_variable(patched))
        _log(f"upsert {name}: creating")
        return UpsertResult("created", self.create_variable(name, value, remarks))

    # Export / import --------------------------------------------------------
    def _get_subscriptions(self) -> list[Any]:
        try:
            data = self._call("GET", PATH_SUBSCRIPTIONS)
        except QLSyncError as e:
            _log(f"subscriptions unavailable: {e}", level="WARN")
            return []
        got = data.get("data")
        return got if isinstance(got, list) else []

    def export_panel(self, *, include_envs: bool = True, include_subscriptions: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            "exportTime": datetime.now(timezone.utc).isoformat(),
            "version": __VERSION__,
            "data": {},
        }
        parts: list[tuple[str, Callable[[], Any]]] = []
        if include_envs:
            parts.append(("environments", lambda: [v.to_api() for v in self.list_variables(use_cache=False)]))
        if include_subscriptions:
            parts.append(("subscriptions", self._get_subscriptions))
        for name, fn in parts:
            try:
                out["data"][name] = fn()
            except QLSyncError as e:
                _log(f"export {name} failed: {e}", level="WARN")
                out["data"][f"exportError_{name}"] = e.message
        return out

    def import_variables(self, variables: Iterable[Mapping[str, Any]], *, overwrite: bool = False) -> dict[str, list[Any]]:
        results: dict[str, list[Any]] = {"success": [], "failed": [], "skipped": []}
        existing = {v.name: v for v in self.list_variables(use_cache=False)}
        for item in variables:
            name = str(item.get("name") or "")
            value = item.get("value")
            if not name or value is None:
                results["failed"].append({"name": name, "error": "缺少必需字段: name, value"})
                continue
            try:
                cur = existing.get(name)
                if cur is not None:
                    if not overwrite:
                        results["skipped"].append({"name": name, "reason": "已存在"})
                        continue
                    cur.value = str(value)
                    cur.remarks = str(item.get("remarks") or cur.remarks)
                    self.update_variable(cur)
                else:
                    self.create_variable(name, str(value), str(item.get("remarks") or ""))
                results["success"].append({"name": name})
            except QLSyncError as e:
                results["failed"].append({"name": name, "error": e.message})
        return results


__all__ = [
    "QingLongClient",
    "RemoteVariable",
    "UpsertResult",
    "connection_complete",
    "STATUS_ENABLED",
    "STATUS_DISABLED",
]
