# api/configAPI.py
# QLSync - Panel connection settings, export/import, setup wizard flag
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ._common import dispatch

router = APIRouter(prefix="/api/config", tags=["config"])


class ConnectionIn(BaseModel):
    qlUrl: str | None = None
    clientId: str | None = None
    clientSecret: str | None = None
    autoSync: bool | None = None
    syncInterval: int | None = None


class ImportIn(BaseModel):
    data: dict[str, Any]
    merge: bool = False


class WizardIn(BaseModel):
    completed: bool = True


@router.get("")
def api_config(request: Request) -> JSONResponse:
    return dispatch(request, "getConfig")


@router.post("")
def api_config_save(request: Request, payload: ConnectionIn = Body(...)) -> JSONResponse:
    return dispatch(request, "saveConfig", config=payload.model_dump(exclude_none=True))


@router.post("/test")
def api_config_test(request: Request, payload: ConnectionIn | None = Body(None)) -> JSONResponse:
    cfg = payload.model_dump(exclude_none=True) if payload is not None else None
    return dispatch(request, "testConnection", config=cfg or None)


@router.get("/export")
def api_config_export(request: Request) -> JSONResponse:
    return dispatch(request, "exportConfig")


@router.post("/import")
def api_config_import(request: Request, payload: ImportIn = Body(...)) -> JSONResponse:
    return dispatch(request, "importConfig", data=payload.data, merge=payload.merge)


@router.post("/wizard")
def api_config_wizard(request: Request, payload: WizardIn = Body(...)) -> JSONResponse:
    return dispatch(request, "setWizardCompleted", completed=payload.completed)
