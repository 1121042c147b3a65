# _logging.py
# QLSync - Console logger with module tags, secret redaction and an optional JSON-lines sink.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations
import sys, datetime, json, os, re, threading, time
from pathlib import Path
from typing import Any, Optional, TextIO, Mapping, Dict

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[33m"
BLUE = "\033[94m"
CYAN = "\033[96m"

LEVELS = {"silent": 60, "off": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}

# display level -> (severity, color)
_DISPLAY: Dict[str, tuple[str, str]] = {
    "DEBUG": ("debug", YELLOW),
    "INFO": ("info", BLUE),
    "WARN": ("warn", YELLOW),
    "ERROR": ("error", RED),
    "SUCCESS": ("info", GREEN),
}
_ALIASES = {"WARNING": "WARN", "ERR": "ERROR", "OK": "SUCCESS"}

# Credentials that may show up inside messages (query strings, headers, cookie strings)
_SECRET_PATTERNS = [
    re.compile(r"(client_secret=)[^&\s;]+", re.I),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(pt_key=)[^;\s]+"),
    re.compile(r'("clientSecret"\s*:\s*")[^"]*'),
]


def redact(text: str) -> str:
    out = str(text)
    for pat in _SECRET_PATTERNS:
        out = pat.sub(lambda m: m.group(1) + "***", out)
    return out


# Debug gate: QLSYNC_DEBUG wins, else runtime.debug in config.json (re-read every few seconds)
_CFG_CACHE: Dict[str, Any] | None = None
_CFG_TS: float = 0.0


def _config_file() -> Path:
    base = os.getenv("CONFIG_BASE")
    return (Path(base) if base else Path.cwd()) / "config.json"


def _debug_enabled() -> bool:
    global _CFG_CACHE, _CFG_TS
    if os.getenv("QLSYNC_DEBUG", "").strip().lower() in ("1", "true", "yes", "on"):
        return True
    now = time.time()
    if _CFG_CACHE is None or (now - _CFG_TS) > 5.0:
        try:
            _CFG_CACHE = json.loads(_config_file().read_text(encoding="utf-8"))
        except Exception:
            _CFG_CACHE = {}
        _CFG_TS = now
    rt = (_CFG_CACHE.get("runtime") or {}) if isinstance(_CFG_CACHE, dict) else {}
    return bool(rt.get("debug"))


class Logger:
    """``[ts] [MODULE] LEVEL message`` lines on a stream; bound loggers share sinks and lock."""

    def __init__(
        self,
        stream: TextIO = sys.stdout,
        level: str = "info",
        use_color: bool = True,
        *,
        json_path: Optional[str] = None,
        _context: Optional[Dict[str, Any]] = None,
        _json_stream: Optional[TextIO] = None,
        _lock: Optional[threading.Lock] = None,
    ):
        self.stream = stream
        self.level_no = LEVELS.get(level, 20)
        self.use_color = use_color
        self._context: Dict[str, Any] = dict(_context or {})
        self._lock = _lock or threading.Lock()
        self._json_stream: Optional[TextIO] = _json_stream
        if json_path and self._json_stream is None:
            self.enable_json(json_path)

    def set_level(self, level: str) -> None:
        self.level_no = LEVELS.get(level.lower(), self.level_no)

    def enable_json(self, file_path: str) -> None:
        p = Path(file_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self._json_stream = p.open("a", encoding="utf-8")

    def bind(self, **ctx: Any) -> "Logger":
        merged = {**self._context, **ctx}
        lg = Logger(self.stream, "info", self.use_color, _context=merged, _json_stream=self._json_stream, _lock=self._lock)
        lg.level_no = self.level_no
        return lg

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    @property
    def module(self) -> str:
        return str(self._context.get("module") or "").strip()

    def _line(self, display: str, msg: str) -> str:
        ts = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        tag = f"[{self.module}] " if self.module else ""
        if not self.use_color:
            return f"[{ts}] {tag}{display} {msg}"
        col = _DISPLAY.get(display, ("info", BLUE))[1]
        tag = f"{CYAN}{tag}{RESET}" if tag else ""
        return f"{DIM}[{ts}]{RESET} {tag}{col}{display}{RESET} {msg}"

    def _allowed(self, severity: str) -> bool:
        sev_no = LEVELS.get(severity, 20)
        if self.level_no <= sev_no:
            return True
        return severity == "debug" and _debug_enabled()

    def emit(self, display: str, message: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        display = _ALIASES.get(display.upper(), display.upper())
        if display not in _DISPLAY:
            display = "INFO"
        if not self._allowed(_DISPLAY[display][0]):
            return
        msg = redact(str(message))
        with self._lock:
            self.stream.write(self._line(display, msg) + "\n")
            self.stream.flush()
            if self._json_stream is not None:
                rec: Dict[str, Any] = {
                    "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds"),
                    "level": display,
                    "module": self.module,
                    "msg": msg,
                }
                if extra:
                    rec["extra"] = {k: redact(v) if isinstance(v, str) else v for k, v in extra.items()}
                self._json_stream.write(json.dumps(rec, ensure_ascii=False) + "\n")
                self._json_stream.flush()

    def debug(self, message: Any, **kw: Any) -> None:
        self.emit("DEBUG", message, **kw)

    def info(self, message: Any, **kw: Any) -> None:
        self.emit("INFO", message, **kw)

    def warn(self, message: Any, **kw: Any) -> None:
        self.emit("WARN", message, **kw)

    def error(self, message: Any, **kw: Any) -> None:
        self.emit("ERROR", message, **kw)

    def success(self, message: Any, **kw: Any) -> None:
        self.emit("SUCCESS", message, **kw)

    # log("text", level="INFO", module="SYNC")
    def __call__(
        self,
        message: str,
        *,
        level: str = "INFO",
        module: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        target = self.bind(module=module) if module else self
        target.emit(level or "INFO", message, extra=extra)


log = Logger(
    level=os.getenv("QLSYNC_LOG_LEVEL", "info").strip().lower() or "info",
    use_color=sys.stdout.isatty() and not os.getenv("NO_COLOR"),
    json_path=os.getenv("QLSYNC_LOG_JSON") or None,
)

__all__ = ["Logger", "log", "redact", "LEVELS"]
