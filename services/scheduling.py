# services/scheduling.py
# QLSync - Auto-sync scheduler (one recurring job) and per-site cookie-change debouncer
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ql_platform.config_base import clamp_interval

try:
    from _logging import log as _real_log
except ImportError:
    _real_log = None


def _log(msg: str, level: str = "INFO") -> None:
    if _real_log is not None:
        _real_log(msg, level=level, module="SCHED")


JOB_NAME = "syncCookie"


def _iso(ts: float) -> str:
    if not ts:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AutoSyncScheduler:
    """Runs ``run_sync_fn`` every ``syncInterval`` minutes while ``autoSync`` is on."""

    def __init__(
        self,
        run_sync_fn: Callable[[], Any],
        *,
        scheduling_cfg: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.run_sync_fn = run_sync_fn
        self._sched_cfg = {"scheduling": dict(scheduling_cfg or {})} if scheduling_cfg else None
        self._clock = clock

        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._poke = threading.Event()
        self._lock = threading.Lock()

        self._active = False
        self._interval_min = 0
        self._next_ts = 0.0
        self._status: dict[str, Any] = {
            "running": False,
            "last_tick": 0,
            "last_run_ok": None,
            "last_run_at": 0,
            "last_error": "",
        }

    # Job control ------------------------------------------------------------
    def setup(self, interval_minutes: Any) -> int:
        """(Re)create the recurring job; the first run is one interval from now."""
        interval = clamp_interval(interval_minutes, self._sched_cfg)
        with self._lock:
            self._active = True
            self._interval_min = interval
            self._next_ts = self._clock() + interval * 60
        _log(f"job {JOB_NAME} scheduled every {interval} min")
        self._poke.set()
        return interval

    def clear(self) -> None:
        with self._lock:
            was = self._active
            self._active = False
            self._next_ts = 0.0
        if was:
            _log(f"job {JOB_NAME} cleared")
        self._poke.set()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def interval_minutes(self) -> int:
        with self._lock:
            return self._interval_min

    def on_config_change(self, old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> None:
        o = dict(old or {})
        n = dict(new or {})
        if o.get("autoSync") == n.get("autoSync") and o.get("syncInterval") == n.get("syncInterval"):
            return
        if n.get("autoSync"):
            self.setup(n.get("syncInterval"))
        else:
            self.clear()
            _log("auto sync disabled")

    def status(self) -> dict[str, Any]:
        with self._lock:
            st = dict(self._status)
            st.update(
                {
                    "job": JOB_NAME,
                    "active": self._active,
                    "interval_min": self._interval_min,
                    "next_run_at": int(self._next_ts),
                    "next_run_iso": _iso(self._next_ts),
                }
            )
        return st

    # Thread -----------------------------------------------------------------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._poke.clear()
        self._thread = threading.Thread(target=self._loop, name="AutoSyncScheduler", daemon=True)
        self._thread.start()
        _log("scheduler thread started")

    def stop(self) -> None:
        self._stop.set()
        self._poke.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=3.0)
        _log("scheduler thread stopped")

    def trigger(self) -> bool:
        ok, err = False, ""
        try:
            res = self.run_sync_fn()
            ok = bool(getattr(res, "success", res))
        except Exception as e:
            ok, err = False, str(e)
            _log(f"{JOB_NAME} run raised: {e}", level="ERROR")
        finally:
            with self._lock:
                self._status["last_run_ok"] = ok
                self._status["last_run_at"] = int(self._clock())
                self._status["last_error"] = err
        return ok

    def tick(self) -> float:
        """Run the job when due; return how long the loop may sleep."""
        now = self._clock()
        with self._lock:
            self._status["last_tick"] = int(now)
            active, due_at, interval = self._active, self._next_ts, self._interval_min
        if not active:
            return 1.0
        if now < due_at:
            return min(30.0, max(0.5, due_at - now))

        _log(f"{JOB_NAME} fired")
        self.trigger()
        with self._lock:
            if self._active and self._next_ts == due_at:
                self._next_ts = self._clock() + interval * 60
        return 0.5

    def _loop(self) -> None:
        with self._lock:
            self._status["running"] = True
        try:
            while not self._stop.is_set():
                self._sleep_or_poke(self.tick())
        finally:
            with self._lock:
                self._status["running"] = False

    def _sleep_or_poke(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self._poke.wait(timeout=seconds)
        self._poke.clear()


TimerFactory = Callable[..., Any]


class CookieChangeDebouncer:
    """One cancellable timer per site; a new event restarts that site's quiet period."""

    def __init__(
        self,
        fire: Callable[[str], Any],
        *,
        delay: float = 300.0,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.fire = fire
        self.delay = float(delay)
        self._timer_factory = timer_factory
        self._timers: dict[str, tuple[int, Any]] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def schedule(self, site_id: str) -> None:
        with self._lock:
            self._seq += 1
            seq = self._seq
            prev = self._timers.pop(site_id, None)
            if prev is not None:
                prev[1].cancel()
            t = self._timer_factory(self.delay, self._run, args=(site_id, seq))
            t.daemon = True
            self._timers[site_id] = (seq, t)
        t.start()
        _log(f"cookie change for site {site_id}: sync in {int(self.delay)}s", level="DEBUG")

    def _run(self, site_id: str, seq: int) -> None:
        with self._lock:
            cur = self._timers.get(site_id)
            if cur is None or cur[0] != seq:
                return
            self._timers.pop(site_id, None)
        _log(f"debounce elapsed for site {site_id}")
        try:
            self.fire(site_id)
        except Exception as e:
            _log(f"debounced sync for {site_id} failed: {e}", level="ERROR")

    def cancel(self, site_id: str) -> bool:
        with self._lock:
            cur = self._timers.pop(site_id, None)
        if cur is None:
            return False
        cur[1].cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            items = list(self._timers.values())
            self._timers.clear()
        for _, t in items:
            t.cancel()

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)


__all__ = ["AutoSyncScheduler", "CookieChangeDebouncer", "JOB_NAME"]
