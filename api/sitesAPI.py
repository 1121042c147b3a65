# api/sitesAPI.py
# QLSync - Site configuration CRUD
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ._common import dispatch

router = APIRouter(prefix="/api/sites", tags=["sites"])


class SiteIn(BaseModel):
    name: str
    url: str
    envName: str
    enabled: bool = True
    autoSync: bool = True


class SitePatch(BaseModel):
    name: str | None = None
    url: str | None = None
    envName: str | None = None
    enabled: bool | None = None
    autoSync: bool | None = None


@router.get("")
def api_sites(request: Request) -> JSONResponse:
    return dispatch(request, "getSites")


@router.post("")
def api_sites_add(request: Request, payload: SiteIn = Body(...)) -> JSONResponse:
    return dispatch(request, "addSite", site=payload.model_dump())


@router.patch("/{site_id}")
def api_sites_update(site_id: str, request: Request, payload: SitePatch = Body(...)) -> JSONResponse:
    return dispatch(request, "updateSite", siteId=site_id, updates=payload.model_dump(exclude_unset=True, exclude_none=True))


@router.delete("/{site_id}")
def api_sites_delete(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "deleteSite", siteId=site_id)
