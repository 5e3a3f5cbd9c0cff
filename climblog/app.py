"""
FastAPI application entry point for the climb log backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from climblog.config import get_settings
from climblog.errors import ClimbLogError
from climblog.routes import router

logger = logging.getLogger(__name__)


async def _handle_climblog_error(request: Request, exc: ClimbLogError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Climb Log Backend (FastAPI)", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ClimbLogError, _handle_climblog_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
