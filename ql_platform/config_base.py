# ql_platform/config_base.py
# QLSync - Runtime configuration (config.json) and shared JSON file helpers
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config and state files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in a container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


def config_dir() -> Path:
    p = CONFIG_BASE()
    p.mkdir(parents=True, exist_ok=True)
    return p


# Default config structure. Panel connection and sites are user data and live
# in the state file (see ql_platform.storage); this file holds tunables.
DEFAULT_CFG: Dict[str, Any] = {
    # --- Runtime timings -----------------------------------------------------
    "runtime": {
        "debug": False,                                 # Verbose DEBUG lines
        "retry_max": 3,                                 # Attempts per panel request
        "retry_delay_sec": 1.0,                         # Fixed pause between attempts
        "batch_delay_sec": 1.0,                         # Pause between sites in a batch sync
        "debounce_sec": 300,                            # Quiet period after a cookie change (5 min)
        "env_cache_ttl_sec": 300,                       # Remote variable list freshness (5 min)
        "identity_cache_ttl_sec": 600,                  # Identity validation cache (10 min)
        "token_ttl_sec": 3600,                          # Panel auth token lifetime (1 h)
        "http_timeout_sec": 15.0,                       # Per-request HTTP timeout
    },

    # --- Scheduling ----------------------------------------------------------
    "scheduling": {
        "min_interval_min": 1,                          # Enforced lower bound for syncInterval
        "default_interval_min": 60,                     # Used when syncInterval is missing/invalid
    },

    # --- Cookie source -------------------------------------------------------
    "cookies": {
        "jar_file": "",                                 # Netscape cookies.txt; empty = in-memory jar fed over HTTP
    },

    # --- HTTP server ---------------------------------------------------------
    "server": {
        "host": "127.0.0.1",
        "port": 8788,
    },
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return config_dir() / "config.json"


def read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _as_float(v: Any, default: float, *, minimum: float = 0.0) -> float:
    try:
        return max(minimum, float(v))
    except Exception:
        return default


def _normalize_runtime(rt: Dict[str, Any]) -> Dict[str, Any]:
    d = DEFAULT_CFG["runtime"]
    out = dict(rt or {})
    out["debug"] = bool(out.get("debug", False))
    try:
        out["retry_max"] = max(1, int(out.get("retry_max", d["retry_max"])))
    except Exception:
        out["retry_max"] = d["retry_max"]
    for key in (
        "retry_delay_sec",
        "batch_delay_sec",
        "debounce_sec",
        "env_cache_ttl_sec",
        "identity_cache_ttl_sec",
        "token_ttl_sec",
        "http_timeout_sec",
    ):
        out[key] = _as_float(out.get(key), float(d[key]))
    return out


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """Read config.json merged over DEFAULT_CFG."""
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = read_json(p)
        except Exception:
            user_cfg = {}

    cfg = deep_merge(DEFAULT_CFG, user_cfg)
    cfg["runtime"] = _normalize_runtime(cfg.get("runtime") or {})
    return cfg


def runtime_settings(cfg: Dict[str, Any] | None = None) -> Dict[str, Any]:
    c = cfg if cfg is not None else load_config()
    return _normalize_runtime(c.get("runtime") or {})


def clamp_interval(minutes: Any, cfg: Dict[str, Any] | None = None) -> int:
    c = cfg if cfg is not None else DEFAULT_CFG
    sch = c.get("scheduling") or DEFAULT_CFG["scheduling"]
    lo = int(sch.get("min_interval_min") or 1)
    default = int(sch.get("default_interval_min") or 60)
    try:
        n = int(minutes or 0)
    except Exception:
        n = 0
    return max(lo, n or default)
