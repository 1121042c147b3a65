# qlsync.py
# QLSync - Cookie to QingLong sync service (runtime wiring + FastAPI app)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import requests
import uvicorn
from fastapi import FastAPI

from _logging import log
from api import register as register_api
from ql_platform.cache import KeyedTTLCache
from ql_platform.config_base import CONFIG_BASE, load_config, runtime_settings
from ql_platform.cookies import CookieAccessor, CookieJar, FileCookieJar, MemoryCookieJar
from ql_platform.orchestrator import SyncOrchestrator
from ql_platform.storage import LocalStore, StorageManager, StoredEnvCache
from ql_platform.sync_log import SyncLog
from ql_platform.vault import SecretVault
from providers.identity.registry import MatcherRegistry
from providers.panel import QingLongClient
from services.messages import MessageHandler
from services.scheduling import AutoSyncScheduler, CookieChangeDebouncer
from services.triggers import (
    CookieChangeTrigger,
    DebouncedSiteSync,
    config_listener,
    on_installed,
    on_startup,
)

__VERSION__ = "1.0.0"


def _build_jar(cfg: dict[str, Any]) -> CookieJar:
    path = str((cfg.get("cookies") or {}).get("jar_file") or "").strip()
    if path:
        p = Path(path)
        if not p.is_absolute():
            p = CONFIG_BASE() / p
        log(f"cookie jar: {p}", level="INFO", module="COOKIE")
        return FileCookieJar(p)
    return MemoryCookieJar()


@dataclass
class Runtime:
    cfg: dict[str, Any]
    store: LocalStore
    storage: StorageManager
    jar: CookieJar
    accessor: CookieAccessor
    client: QingLongClient
    registry: MatcherRegistry
    sync_log: SyncLog
    orchestrator: SyncOrchestrator
    scheduler: AutoSyncScheduler
    debouncer: CookieChangeDebouncer
    trigger: CookieChangeTrigger
    handler: MessageHandler
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)

    def start(self, *, background: bool = True) -> None:
        on_installed(self.storage)
        self.scheduler.start()
        if background:
            threading.Thread(target=self._startup, name="QLSyncStartup", daemon=True).start()
        else:
            self._startup()

    def _startup(self) -> None:
        removed = self.sync_log.auto_cleanup()
        if removed["total"]:
            log(f"log cleanup: removed {removed['total']} old entries", level="INFO", module="SYNC")
        res = on_startup(self.storage, self.scheduler, self.orchestrator)
        if res is not None:
            log(f"startup sync: {res.message}", level="INFO", module="SYNC")

    def stop(self) -> None:
        self.scheduler.stop()
        self.debouncer.cancel_all()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.handler.shutdown(wait=False)


def build_runtime(
    cfg: dict[str, Any] | None = None,
    *,
    store: LocalStore | None = None,
    vault: SecretVault | None = None,
    jar: CookieJar | None = None,
    session: requests.Session | None = None,
    matchers: Iterable[Any] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.time,
    timer_factory: Callable[..., Any] = threading.Timer,
) -> Runtime:
    cfg = cfg if cfg is not None else load_config()
    rt = runtime_settings(cfg)

    store = store or LocalStore()
    storage = StorageManager(store, vault=vault)
    jar = jar if jar is not None else _build_jar(cfg)
    accessor = CookieAccessor(jar, clock=clock)

    client = QingLongClient(
        storage.get_config,
        session=session,
        env_cache=StoredEnvCache(storage, ttl=rt["env_cache_ttl_sec"], clock=clock),
        token_ttl=rt["token_ttl_sec"],
        max_retries=rt["retry_max"],
        retry_delay=rt["retry_delay_sec"],
        timeout=rt["http_timeout_sec"],
        sleep=sleep,
        clock=clock,
        decrypt=storage.vault.decrypt,
    )

    registry = MatcherRegistry(matchers)
    for m in registry.matchers:
        if hasattr(m, "cache"):
            m.cache = KeyedTTLCache(rt["identity_cache_ttl_sec"], clock=clock)
        if hasattr(m, "timeout"):
            m.timeout = rt["http_timeout_sec"]

    sync_log = SyncLog(storage, clock=clock)
    orchestrator = SyncOrchestrator(
        storage=storage,
        accessor=accessor,
        client=client,
        registry=registry,
        sync_log=sync_log,
        sleep=sleep,
        batch_delay=rt["batch_delay_sec"],
        clock=clock,
    )

    scheduler = AutoSyncScheduler(orchestrator.sync_all, scheduling_cfg=cfg.get("scheduling"), clock=clock)
    store.add_listener(config_listener(scheduler))

    debouncer = CookieChangeDebouncer(
        DebouncedSiteSync(storage, orchestrator),
        delay=rt["debounce_sec"],
        timer_factory=timer_factory,
    )
    trigger = CookieChangeTrigger(storage, debouncer)
    unsubscribe = trigger.attach(jar)

    handler = MessageHandler(storage=storage, orchestrator=orchestrator, client=client, sync_log=sync_log)

    return Runtime(
        cfg=cfg,
        store=store,
        storage=storage,
        jar=jar,
        accessor=accessor,
        client=client,
        registry=registry,
        sync_log=sync_log,
        orchestrator=orchestrator,
        scheduler=scheduler,
        debouncer=debouncer,
        trigger=trigger,
        handler=handler,
        _unsubscribe=unsubscribe,
    )


def create_app(runtime: Runtime | None = None, *, autostart: bool = True) -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        rt = getattr(app.state, "runtime", None)
        if rt is None:
            rt = build_runtime()
            app.state.runtime = rt
        if autostart:
            rt.start()
            log("runtime started", level="SUCCESS", module="API")
        try:
            yield
        finally:
            if autostart:
                rt.stop()
                log("runtime stopped", level="INFO", module="API")

    app = FastAPI(title="QLSync", version=__VERSION__, lifespan=_lifespan)
    if runtime is not None:
        app.state.runtime = runtime
    register_api(app)
    return app


app = create_app()


# Entry point
def main(host: str | None = None, port: int | None = None) -> None:
    cfg = load_config()
    srv = cfg.get("server") or {}
    host = host or str(srv.get("host") or "127.0.0.1")
    port = int(port or srv.get("port") or 8788)
    debug = bool((cfg.get("runtime") or {}).get("debug"))

    print("\nQLSync running:")
    print(f"  Local:   http://{host}:{port}")
    print(f"  Config:  {CONFIG_BASE() / 'config.json'} (JSON)")
    print(f"  State:   {CONFIG_BASE() / 'state.json'}\n")

    uvicorn.run(app, host=host, port=port, log_level=("debug" if debug else "warning"))


if __name__ == "__main__":
    main()
