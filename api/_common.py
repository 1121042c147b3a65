# api/_common.py
# QLSync - shared helpers for the HTTP routes
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


def runtime(request: Request) -> Any:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        raise HTTPException(status_code=503, detail="runtime not started")
    return rt


def dispatch(request: Request, action: str, **payload: Any) -> JSONResponse:
    res = runtime(request).handler.handle({"action": action, **payload})
    return nostore(JSONResponse(res))


def nostore(res: JSONResponse) -> JSONResponse:
    res.headers["Cache-Control"] = "no-store"
    return res
