# api/logsAPI.py
# QLSync - Sync history endpoints
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from ._common import dispatch, runtime

router = APIRouter(prefix="/api/logs", tags=["logs"])


def _options(site_id: str | None, status: str | None, offset: int | None, limit: int | None) -> dict:
    opts: dict = {}
    if site_id:
        opts["siteId"] = site_id
    if status:
        opts["status"] = status
    if offset is not None:
        opts["offset"] = offset
    if limit is not None:
        opts["limit"] = limit
    return opts


@router.get("")
def api_logs(
    request: Request,
    site_id: str | None = None,
    status: str | None = None,
    offset: int | None = None,
    limit: int | None = None,
) -> JSONResponse:
    return dispatch(request, "getLogs", options=_options(site_id, status, offset, limit))


@router.delete("")
def api_logs_clear(request: Request) -> JSONResponse:
    return dispatch(request, "clearLogs")


@router.delete("/{site_id}")
def api_logs_clear_site(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "clearSiteLogs", siteId=site_id)


@router.get("/search")
def api_logs_search(request: Request, q: str = "", limit: int = 100) -> dict:
    return {"success": True, "logs": runtime(request).sync_log.search(q, limit)}


@router.get("/export")
def api_logs_export(request: Request, site_id: str | None = None, status: str | None = None) -> Response:
    body = runtime(request).sync_log.export(_options(site_id, status, None, None))
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="qlsync-logs.json"'},
    )
