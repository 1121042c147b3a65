# api/cookiesAPI.py
# QLSync - Cookie endpoints: per-site check/details/delete and the jar bridge
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ql_platform.cookies import Cookie, FileCookieJar, MemoryCookieJar

from ._common import dispatch, nostore, runtime

router = APIRouter(prefix="/api/cookies", tags=["cookies"])


class CookieIn(BaseModel):
    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    httpOnly: bool = False
    sameSite: str = "unspecified"
    expirationDate: float | None = None


class CookiesIn(BaseModel):
    cookies: list[CookieIn]


@router.post("")
def api_cookies_push(request: Request, payload: CookiesIn = Body(...)) -> dict[str, Any]:
    jar = runtime(request).jar
    if not isinstance(jar, MemoryCookieJar):
        raise HTTPException(status_code=409, detail="cookie jar is file-backed; use /api/cookies/reload")
    for c in payload.cookies:
        jar.set(
            Cookie(
                name=c.name,
                value=c.value,
                domain=c.domain,
                path=c.path,
                secure=c.secure,
                http_only=c.httpOnly,
                same_site=c.sameSite,
                expiration_date=c.expirationDate,
            )
        )
    return {"success": True, "count": len(payload.cookies)}


@router.post("/reload")
def api_cookies_reload(request: Request) -> dict[str, Any]:
    jar = runtime(request).jar
    if not isinstance(jar, FileCookieJar):
        raise HTTPException(status_code=409, detail="cookie jar is not file-backed")
    return {"success": True, "changes": jar.reload()}


@router.get("/{site_id}/check")
def api_cookies_check(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "checkCookie", siteId=site_id)


@router.get("/{site_id}/details")
def api_cookies_details(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "getCookieDetails", siteId=site_id)


@router.delete("/{site_id}")
def api_cookies_delete(site_id: str, request: Request) -> JSONResponse:
    return dispatch(request, "deleteCookies", siteId=site_id)


@router.get("/identity")
def api_cookies_matchers(request: Request) -> JSONResponse:
    return nostore(JSONResponse({"matchers": runtime(request).registry.manifests()}))
