# ql_platform/storage.py
# QLSync - Local key-value state (connection, sites, logs, caches) on a JSON file
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import random
import string
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from .config_base import clamp_interval, config_dir, read_json, write_json_atomic
from .errors import QLSyncError
from .vault import SecretVault, looks_encrypted, new_install_id

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="STORE")


# Storage keys
KEY_CONFIG = "config"
KEY_SITES = "sites"
KEY_LOGS = "logs"
KEY_WIZARD = "wizardCompleted"
KEY_ENV_CACHE = "envCache"
KEY_ENV_CACHE_TIME = "envCacheTime"
KEY_INSTALL_ID = "installId"

EXPORT_VERSION = "1.0.0"

DEFAULT_CONNECTION: dict[str, Any] = {
    "qlUrl": "",
    "clientId": "",
    "clientSecret": "",
    "autoSync": True,
    "syncInterval": 60,
}

DEFAULT_SITE: dict[str, Any] = {
    "id": "",
    "name": "",
    "url": "",
    "envName": "",
    "enabled": True,
    "autoSync": True,
    "lastSync": None,
    "lastStatus": None,
}

ChangeListener = Callable[[str, Any, Any], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    tail = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{now_ms()}-{tail}"


def state_path() -> Path:
    return config_dir() / "state.json"


class LocalStore:
    """Durable key-value store on a single JSON file, one namespace."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path else state_path()
        self._lock = threading.RLock()
        self._data: dict[str, Any] | None = None
        self._listeners: list[ChangeListener] = []

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            data: dict[str, Any] = {}
            if self.path.exists():
                try:
                    data = read_json(self.path)
                except Exception as e:
                    _log(f"state file unreadable, starting empty: {e}", level="WARN")
                    data = {}
            self._data = data if isinstance(data, dict) else {}
        return self._data

    def _flush(self) -> None:
        write_json_atomic(self.path, self._load())

    def add_listener(self, fn: ChangeListener) -> None:
        self._listeners.append(fn)

    def _notify(self, changes: list[tuple[str, Any, Any]]) -> None:
        for key, old, new in changes:
            for fn in list(self._listeners):
                try:
                    fn(key, old, new)
                except Exception as e:
                    _log(f"change listener failed for {key}: {e}", level="ERROR")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            v = self._load().get(key, default)
            return copy.deepcopy(v)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            d = self._load()
            return {k: copy.deepcopy(d[k]) for k in keys if k in d}

    def set(self, items: Mapping[str, Any]) -> None:
        changes: list[tuple[str, Any, Any]] = []
        with self._lock:
            d = self._load()
            for k, v in items.items():
                old = d.get(k)
                d[k] = copy.deepcopy(v)
                changes.append((k, old, copy.deepcopy(v)))
            self._flush()
        self._notify(changes)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write one key under the store lock; returns the stored value."""
        with self._lock:
            d = self._load()
            old = d.get(key, default)
            new = fn(copy.deepcopy(old))
            d[key] = copy.deepcopy(new)
            self._flush()
        self._notify([(key, old, copy.deepcopy(new))])
        return new

    def remove(self, keys: Iterable[str]) -> None:
        changes: list[tuple[str, Any, Any]] = []
        with self._lock:
            d = self._load()
            for k in keys:
                if k in d:
                    changes.append((k, d.pop(k), None))
            self._flush()
        self._notify(changes)

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._flush()


class StorageManager:
    """Typed access to the state file: connection, sites, logs, env cache, wizard."""

    def __init__(self, store: LocalStore, vault: SecretVault | None = None) -> None:
        self.store = store
        self.vault = vault or SecretVault(self.install_id())
        self._secret_cache: tuple[str, str] | None = None

    # Install identity -------------------------------------------------------
    def install_id(self) -> str:
        iid = self.store.get(KEY_INSTALL_ID)
        if not iid:
            iid = new_install_id()
            self.store.set({KEY_INSTALL_ID: iid})
        return str(iid)

    # Connection -------------------------------------------------------------
    def get_config(self) -> dict[str, Any]:
        cfg = dict(DEFAULT_CONNECTION)
        cfg.update(self.store.get(KEY_CONFIG) or {})
        secret = cfg.get("clientSecret")
        if secret and looks_encrypted(secret):
            cfg["clientSecret"] = self._plain_secret(str(secret))
        return cfg

    def _plain_secret(self, token: str) -> str:
        # decrypted value held in memory only, keyed by the ciphertext it came from
        cached = self._secret_cache
        if cached is not None and cached[0] == token:
            return cached[1]
        try:
            plain = self.vault.decrypt(token)
        except QLSyncError as e:
            # legacy plaintext that happens to look like base64
            _log(f"clientSecret not decryptable, keeping stored value: {e}", level="WARN")
            return token
        self._secret_cache = (token, plain)
        return plain

    def save_config(self, cfg: Mapping[str, Any]) -> dict[str, Any]:
        to_save = dict(DEFAULT_CONNECTION)
        to_save.update(dict(cfg or {}))
        to_save["syncInterval"] = clamp_interval(to_save.get("syncInterval"))
        to_save["autoSync"] = bool(to_save.get("autoSync"))
        to_save["qlUrl"] = str(to_save.get("qlUrl") or "").strip().rstrip("/")
        secret = str(to_save.get("clientSecret") or "")
        if secret.strip() and not looks_encrypted(secret):
            to_save["clientSecret"] = self.vault.encrypt(secret)
        self.store.set({KEY_CONFIG: to_save})
        return to_save

    def update_config(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        cfg = self.get_config()
        cfg.update(dict(updates or {}))
        self.save_config(cfg)
        return cfg

    def connection_complete(self, cfg: Mapping[str, Any] | None = None) -> bool:
        c = cfg if cfg is not None else self.get_config()
        return bool(c.get("qlUrl") and c.get("clientId") and c.get("clientSecret"))

    # Sites ------------------------------------------------------------------
    def get_sites(self) -> list[dict[str, Any]]:
        sites = self.store.get(KEY_SITES) or []
        return [s for s in sites if isinstance(s, dict)]

    def save_sites(self, sites: list[dict[str, Any]]) -> None:
        self.store.set({KEY_SITES: list(sites)})

    def update_sites(self, fn: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]) -> list[dict[str, Any]]:
        return self.store.update(KEY_SITES, lambda cur: list(fn([s for s in (cur or []) if isinstance(s, dict)])), [])

    def get_site(self, site_id: str) -> dict[str, Any] | None:
        for s in self.get_sites():
            if s.get("id") == site_id:
                return s
        return None

    def add_site(self, data: Mapping[str, Any]) -> dict[str, Any]:
        site = dict(DEFAULT_SITE)
        site.update(dict(data or {}))
        site["id"] = generate_id()
        self.update_sites(lambda sites: sites + [site])
        _log(f"site added: {site.get('name')} ({site['id']})")
        return site

    def update_site(self, site_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        patch = {k: v for k, v in dict(updates or {}).items() if k != "id"}
        found: list[dict[str, Any]] = []

        def _apply(sites: list[dict[str, Any]]) -> list[dict[str, Any]]:
            for i, s in enumerate(sites):
                if s.get("id") == site_id:
                    sites[i] = {**s, **patch}
                    found.append(sites[i])
                    break
            return sites

        self.update_sites(_apply)
        return found[0] if found else None

    def delete_site(self, site_id: str) -> bool:
        removed: list[int] = []

        def _apply(sites: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = [s for s in sites if s.get("id") != site_id]
            removed.append(len(sites) - len(kept))
            return kept

        self.update_sites(_apply)
        return bool(removed and removed[0])

    # Logs (raw list; policy lives in ql_platform.sync_log) -------------------
    def get_logs(self) -> list[dict[str, Any]]:
        return list(self.store.get(KEY_LOGS) or [])

    def save_logs(self, logs: list[dict[str, Any]]) -> None:
        self.store.set({KEY_LOGS: list(logs)})

    def update_logs(self, fn: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]) -> list[dict[str, Any]]:
        return self.store.update(KEY_LOGS, lambda cur: list(fn(list(cur or []))), [])

    # Wizard -----------------------------------------------------------------
    def get_wizard_completed(self) -> bool:
        return bool(self.store.get(KEY_WIZARD, False))

    def set_wizard_completed(self, completed: bool) -> None:
        self.store.set({KEY_WIZARD: bool(completed)})

    # Remote variable cache --------------------------------------------------
    def get_env_cache(self) -> dict[str, Any]:
        got = self.store.get_many([KEY_ENV_CACHE, KEY_ENV_CACHE_TIME])
        return {"data": got.get(KEY_ENV_CACHE), "timestamp": int(got.get(KEY_ENV_CACHE_TIME) or 0)}

    def set_env_cache(self, envs: list[dict[str, Any]], *, timestamp: int | None = None) -> None:
        self.store.set({KEY_ENV_CACHE: list(envs), KEY_ENV_CACHE_TIME: timestamp if timestamp is not None else now_ms()})

    def clear_env_cache(self) -> None:
        self.store.remove([KEY_ENV_CACHE, KEY_ENV_CACHE_TIME])

    # Export / import --------------------------------------------------------
    def export_config(self) -> dict[str, Any]:
        cfg = self.get_config()
        cfg["clientSecret"] = ""
        return {
            "config": cfg,
            "sites": self.get_sites(),
            "exportTime": now_ms(),
            "version": EXPORT_VERSION,
        }

    def import_config(self, data: Mapping[str, Any], *, merge: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {"success": False, "message": "", "needsClientSecret": False}
        if not isinstance(data, Mapping) or not isinstance(data.get("config"), Mapping):
            result["message"] = "导入数据格式无效"
            return result

        incoming_cfg = dict(data["config"])
        incoming_sites = [dict(s) for s in (data.get("sites") or []) if isinstance(s, Mapping)]
        for s in incoming_sites:
            s["id"] = generate_id()

        try:
            if merge:
                current = self.get_config()
                incoming_cfg["clientSecret"] = current.get("clientSecret") or ""
                self.save_config(incoming_cfg)
                self.update_sites(lambda sites: sites + incoming_sites)
            else:
                self.save_config(incoming_cfg)
                self.save_sites(incoming_sites)
        except Exception as e:
            result["message"] = f"导入失败: {e}"
            return result

        result["success"] = True
        result["message"] = "配置导入成功"
        result["needsClientSecret"] = not incoming_cfg.get("clientSecret")
        return result

    def clear_all(self) -> None:
        iid = self.install_id()
        self.store.clear()
        self.store.set({KEY_INSTALL_ID: iid})


class StoredEnvCache:
    """Remote variable list cache persisted in the state file with its fetch time."""

    def __init__(self, storage: StorageManager, ttl: float = 300.0, *, clock: Callable[[], float] = time.time) -> None:
        self.storage = storage
        self.ttl = float(ttl)
        self._clock = clock

    def get(self) -> list[dict[str, Any]] | None:
        c = self.storage.get_env_cache()
        data = c.get("data")
        if data is None:
            return None
        age_ms = self._clock() * 1000 - int(c.get("timestamp") or 0)
        if age_ms < self.ttl * 1000:
            return list(data)
        return None

    def set(self, envs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.storage.set_env_cache(envs, timestamp=int(self._clock() * 1000))
        return envs

    def clear(self) -> None:
        self.storage.clear_env_cache()


__all__ = [
    "LocalStore",
    "StorageManager",
    "StoredEnvCache",
    "DEFAULT_CONNECTION",
    "DEFAULT_SITE",
    "generate_id",
    "now_ms",
    "state_path",
]
