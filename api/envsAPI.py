# api/envsAPI.py
# QLSync - QingLong environment variable endpoints
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from ._common import dispatch

router = APIRouter(prefix="/api/envs", tags=["envs"])


class EnvIn(BaseModel):
    name: str
    value: str
    remarks: str | None = None


class EnvUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    value: str
    remarks: str | None = None


class IdsIn(BaseModel):
    ids: list[Any]


@router.get("")
def api_envs(request: Request, use_cache: bool = True) -> JSONResponse:
    return dispatch(request, "getEnvs", useCache=use_cache)


@router.post("")
def api_envs_add(request: Request, payload: EnvIn = Body(...)) -> JSONResponse:
    return dispatch(request, "addEnv", data=payload.model_dump())


@router.put("")
def api_envs_update(request: Request, payload: EnvUpdate = Body(...)) -> JSONResponse:
    return dispatch(request, "updateEnv", data=payload.model_dump())


@router.delete("")
def api_envs_delete(request: Request, payload: IdsIn = Body(...)) -> JSONResponse:
    return dispatch(request, "deleteEnv", ids=payload.ids)


@router.put("/enable")
def api_envs_enable(request: Request, payload: IdsIn = Body(...)) -> JSONResponse:
    return dispatch(request, "enableEnv", ids=payload.ids)


@router.put("/disable")
def api_envs_disable(request: Request, payload: IdsIn = Body(...)) -> JSONResponse:
    return dispatch(request, "disableEnv", ids=payload.ids)


@router.get("/export")
def api_envs_export(request: Request, envs: bool = True, subscriptions: bool = True) -> JSONResponse:
    return dispatch(request, "exportPanel", includeEnvs=envs, includeSubscriptions=subscriptions)


class ImportEnvsIn(BaseModel):
    variables: list[dict[str, Any]]
    overwrite: bool = False


@router.post("/import")
def api_envs_import(request: Request, payload: ImportEnvsIn = Body(...)) -> JSONResponse:
    return dispatch(request, "importEnvs", variables=payload.variables, overwrite=payload.overwrite)
