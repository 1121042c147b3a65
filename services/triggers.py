# services/triggers.py
# QLSync - Event triggers: cookie changes, config changes, startup and install hooks
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any, Callable

from ql_platform.cookies import CookieChange, CookieJar, domain_matches, extract_domain
from ql_platform.orchestrator import BatchOutcome, SyncOrchestrator
from ql_platform.storage import KEY_CONFIG, StorageManager

from .scheduling import AutoSyncScheduler, CookieChangeDebouncer

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="SCHED")


def _auto(site: dict[str, Any]) -> bool:
    return bool(site.get("enabled") and site.get("autoSync"))


class DebouncedSiteSync:
    """Debouncer callback: sync the site as it is configured when the timer fires."""

    def __init__(self, storage: StorageManager, orchestrator: SyncOrchestrator) -> None:
        self.storage = storage
        self.orchestrator = orchestrator

    def __call__(self, site_id: str) -> None:
        site = self.storage.get_site(site_id)
        if site is None:
            _log(f"debounced sync skipped: site {site_id} no longer exists")
            return
        if not _auto(site):
            _log(f"debounced sync skipped: {site.get('name')} no longer auto-synced")
            return
        _log(f"debounced sync: {site.get('name')}")
        self.orchestrator.sync_site(site)


class CookieChangeTrigger:
    def __init__(self, storage: StorageManager, debouncer: CookieChangeDebouncer) -> None:
        self.storage = storage
        self.debouncer = debouncer

    def __call__(self, change: CookieChange) -> list[str]:
        scheduled: list[str] = []
        try:
            for site in self.storage.get_sites():
                if not _auto(site):
                    continue
                if domain_matches(extract_domain(str(site.get("url") or "")), change.cookie.domain):
                    _log(f"cookie change on {site.get('name')}: {change.cookie.name}", level="DEBUG")
                    self.debouncer.schedule(str(site.get("id")))
                    scheduled.append(str(site.get("id")))
        except Exception as e:
            _log(f"cookie change handling failed: {e}", level="ERROR")
        return scheduled

    def attach(self, jar: CookieJar) -> Callable[[], None]:
        return jar.add_listener(self)


def config_listener(scheduler: AutoSyncScheduler) -> Callable[[str, Any, Any], None]:
    """Store listener that reschedules the auto-sync job when autoSync/syncInterval change."""

    def _on_change(key: str, old: Any, new: Any) -> None:
        if key != KEY_CONFIG:
            return
        scheduler.on_config_change(old if isinstance(old, dict) else None, new if isinstance(new, dict) else None)

    return _on_change


def on_startup(
    storage: StorageManager,
    scheduler: AutoSyncScheduler,
    orchestrator: SyncOrchestrator,
) -> BatchOutcome | None:
    try:
        cfg = storage.get_config()
        sites = storage.get_sites()
        if cfg.get("autoSync") and sites:
            scheduler.setup(cfg.get("syncInterval"))
            return orchestrator.sync_all()
        _log("startup: auto sync not armed (disabled or no sites)")
    except Exception as e:
        _log(f"startup hook failed: {e}", level="ERROR")
    return None


def on_installed(storage: StorageManager) -> bool:
    done = storage.get_wizard_completed()
    if not done:
        _log("setup pending: configure the QingLong connection and add a site", level="WARN")
    return done


__all__ = [
    "DebouncedSiteSync",
    "CookieChangeTrigger",
    "config_listener",
    "on_startup",
    "on_installed",
]
