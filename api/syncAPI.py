# api/syncAPI.py
# QLSync - Sync endpoints (batch, single site, selected cookies, scheduler status)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ._common import dispatch, runtime

router = APIRouter(prefix="/api/sync", tags=["synchronization"])


class SelectedIn(BaseModel):
    cookieNames: list[str]


@router.post("")
def api_sync_now(request: Request) -> JSONResponse:
    return dispatch(request, "syncNow")


@router.get("/status")
def api_sync_status(request: Request) -> dict[str, Any]:
    return runtime(request).scheduler.status()


@router.post("/{site_id}")
def api_sync_site(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "syncSite", siteId=site_id)


@router.post("/{site_id}/selected")
def api_sync_selected(site_id: str, request: Request, payload: SelectedIn = Body(...)) -> JSONResponse:
    return dispatch(request, "syncSelectedCookies", siteId=site_id, cookieNames=payload.cookieNames)
