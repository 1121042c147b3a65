# api/__init__.py
# QLSync - HTTP routes
from __future__ import annotations

from fastapi import FastAPI

from .configAPI import router as config_router
from .cookiesAPI import router as cookies_router
from .envsAPI import router as envs_router
from .logsAPI import router as logs_router
from .messageAPI import router as message_router
from .sitesAPI import router as sites_router
from .syncAPI import router as sync_router

__all__ = [
    "config_router",
    "cookies_router",
    "envs_router",
    "logs_router",
    "message_router",
    "sites_router",
    "sync_router",
    "register",
]


def register(app: FastAPI) -> None:
    app.include_router(message_router)
    app.include_router(sync_router)
    app.include_router(envs_router)
    app.include_router(logs_router)
    app.include_router(config_router)
    app.include_router(sites_router)
    app.include_router(cookies_router)
