# src/espa/apps/api/server.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from espa import __version__
from espa.config.settings import Settings
from espa.services.control import ControlContext, ControlError, ValidationError

from . import auth_api, device_api, entry_api

_log = logging.getLogger("espa.api")


def _envelope_response(exc: ControlError) -> JSONResponse:
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
    return JSONResponse(status_code=exc.status_code, content=exc.envelope.as_dict(), headers=headers)


def create_app(context: ControlContext | None = None, *, settings: Settings | None = None) -> FastAPI:
    """Build the HTTP app around ``context`` (a fresh one from ``settings`` by default)."""

    control = context or ControlContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log.info("espa control API starting (mock transport=%s)", not control.settings.iot_hub.enabled)
        try:
            yield
        finally:
            await control.aclose()

    app = FastAPI(title="ESPA Control API", lifespan=lifespan, version=__version__)
    app.state.control = control

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ControlError)
    async def _control_error(request: Request, exc: ControlError) -> JSONResponse:
        if exc.status_code >= 500:
            _log.error("%s %s failed: %s", request.method, request.url.path, exc.code)
        return _envelope_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _envelope_response(ValidationError("Invalid request body", code="invalid_request"))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        _log.exception("%s %s crashed", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error", "code": "internal_error"})

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True, "version": __version__}

    app.include_router(auth_api.router)
    app.include_router(device_api.router)
    app.include_router(entry_api.router)
    return app
