"""FastAPI dashboard exposing limit decisions to the view layer."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from taskquota.dashboard.routers import limits
from taskquota.dashboard.routers._deps import set_engine

_logger = logging.getLogger(__name__)


def create_app(engine=None) -> FastAPI:
    app = FastAPI(
        title="taskquota",
        description="Cooldown and quota decisions for rewarded tasks.",
        version="1.0.0",
    )

    cors_origins = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
        ).split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    set_engine(engine)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "engine": engine is not None}

    app.include_router(limits.router)
    return app
