# ql_platform/sync_log.py
# QLSync - Sync history (append-only, newest first, bounded by age and count)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import time
from datetime import datetime
from typing import Any, Callable, Mapping

from .storage import StorageManager, generate_id

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"

MAX_LOGS = 1000
MAX_DAYS = 30
DAY_MS = 24 * 60 * 60 * 1000


class SyncLog:
    def __init__(
        self,
        storage: StorageManager,
        *,
        max_logs: int = MAX_LOGS,
        max_days: int = MAX_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.max_logs = int(max_logs)
        self.max_days = int(max_days)
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # Writers
    def add(self, site_id: str, site_name: str, status: str, message: str) -> dict[str, Any]:
        entry = {
            "id": generate_id(),
            "timestamp": self._now_ms(),
            "siteId": site_id,
            "siteName": site_name,
            "status": status,
            "message": str(message),
        }
        self.storage.update_logs(lambda logs: self._bounded([entry] + logs))
        return entry

    def success(self, site_id: str, site_name: str, message: str = "同步成功") -> dict[str, Any]:
        return self.add(site_id, site_name, STATUS_SUCCESS, message)

    def error(self, site_id: str, site_name: str, message: str) -> dict[str, Any]:
        return self.add(site_id, site_name, STATUS_FAILED, message)

    def info(self, site_id: str, site_name: str, message: str) -> dict[str, Any]:
        return self.add(site_id, site_name, STATUS_PENDING, message)

    def _bounded(self, logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        cutoff = self._now_ms() - self.max_days * DAY_MS
        kept = [x for x in logs if int(x.get("timestamp") or 0) > cutoff]
        return kept[: self.max_logs]

    def auto_cleanup(self) -> dict[str, int]:
        counts: dict[str, int] = {}

        def _apply(logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
            cutoff = self._now_ms() - self.max_days * DAY_MS
            by_age = [x for x in logs if int(x.get("timestamp") or 0) > cutoff]
            by_count = by_age[: self.max_logs]
            counts["removedByAge"] = len(logs) - len(by_age)
            counts["removedByCount"] = len(by_age) - len(by_count)
            return by_count

        self.storage.update_logs(_apply)
        counts["total"] = counts["removedByAge"] + counts["removedByCount"]
        return counts

    def clear_all(self) -> None:
        self.storage.save_logs([])

    def clear_site(self, site_id: str) -> int:
        removed: list[int] = []

        def _apply(logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = [x for x in logs if x.get("siteId") != site_id]
            removed.append(len(logs) - len(kept))
            return kept

        self.storage.update_logs(_apply)
        return removed[0]

    # Readers
    def get_logs(self, options: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        opts = dict(options or {})
        logs = self.storage.get_logs()
        if opts.get("siteId"):
            logs = [x for x in logs if x.get("siteId") == opts["siteId"]]
        if opts.get("status"):
            logs = [x for x in logs if x.get("status") == opts["status"]]
        if opts.get("offset") is not None or opts.get("limit") is not None:
            offset = int(opts.get("offset") or 0)
            limit = int(opts.get("limit") or len(logs))
            logs = logs[offset: offset + limit]
        return logs

    def stats(self) -> dict[str, Any]:
        logs = self.storage.get_logs()
        out: dict[str, Any] = {"total": len(logs), "success": 0, "failed": 0, "pending": 0, "today": 0, "lastSync": None}
        midnight = datetime.fromtimestamp(self._clock()).replace(hour=0, minute=0, second=0, microsecond=0)
        today_ms = int(midnight.timestamp() * 1000)
        for x in logs:
            st = x.get("status")
            if st == STATUS_SUCCESS:
                out["success"] += 1
            elif st == STATUS_FAILED:
                out["failed"] += 1
            else:
                out["pending"] += 1
            ts = int(x.get("timestamp") or 0)
            if ts >= today_ms:
                out["today"] += 1
            if out["lastSync"] is None or ts > out["lastSync"]:
                out["lastSync"] = ts
        return out

    def search(self, keyword: str, limit: int = 100) -> list[dict[str, Any]]:
        kw = (keyword or "").lower()
        hits = [
            x for x in self.storage.get_logs()
            if kw in str(x.get("siteName") or "").lower() or kw in str(x.get("message") or "").lower()
        ]
        return hits[: int(limit)]

    def export(self, options: Mapping[str, Any] | None = None) -> str:
        payload = {
            "logs": self.get_logs(options),
            "stats": self.stats(),
            "exportTime": self._now_ms(),
            "version": "1.0.0",
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    @staticmethod
    def format_entry(entry: Mapping[str, Any]) -> str:
        ts = datetime.fromtimestamp(int(entry.get("timestamp") or 0) / 1000).strftime("%Y-%m-%d %H:%M:%S")
        st = entry.get("status")
        icon = "✓" if st == STATUS_SUCCESS else ("✗" if st == STATUS_FAILED else "○")
        return f"[{ts}] {icon} {entry.get('siteName')}: {entry.get('message')}"

    def relative_time(self, timestamp_ms: int) -> str:
        diff = max(0, self._now_ms() - int(timestamp_ms))
        seconds = diff // 1000
        minutes = seconds // 60
        hours = minutes // 60
        days = hours // 24
        if seconds < 60:
            return "刚刚"
        if minutes < 60:
            return f"{minutes}分钟前"
        if hours < 24:
            return f"{hours}小时前"
        if days < 7:
            return f"{days}天前"
        return datetime.fromtimestamp(int(timestamp_ms) / 1000).strftime("%Y-%m-%d")


__all__ = ["SyncLog", "STATUS_SUCCESS", "STATUS_FAILED", "STATUS_PENDING", "MAX_LOGS", "MAX_DAYS"]
