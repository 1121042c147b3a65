# api/messageAPI.py
# QLSync - Generic message endpoint (same contract as the in-process dispatcher)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from ._common import nostore, runtime

router = APIRouter(prefix="/api", tags=["message"])


class MessageIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str


@router.post("/message")
async def api_message(payload: MessageIn, request: Request) -> JSONResponse:
    fut = runtime(request).handler.submit(payload.model_dump())
    res: dict[str, Any] = await asyncio.wrap_future(fut)
    return nostore(JSONResponse(res))


@router.get("/message/actions")
def api_message_actions(request: Request) -> dict[str, Any]:
    return {"actions": runtime(request).handler.actions}
