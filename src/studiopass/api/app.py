# src/studiopass/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance, installs CORS and maps domain errors to
HTTP responses. Endpoints live in `studiopass.api.routes`.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from studiopass import __version__
from studiopass.core.errors import DomainError, ErrorCode
from studiopass.core.logging import configure_logging

from .routes import router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="StudioPass API", version=__version__)

# CORS (dev-friendly): allow local frontends to call this API.
# Configure via env:
# - STUDIOPASS_CORS_ORIGINS="http://localhost:8081,http://127.0.0.1:8081"
# - STUDIOPASS_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("STUDIOPASS_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("STUDIOPASS_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
cors_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
if cors_origins or cors_origin_regex:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=cors_origin_regex or None,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(router)

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.INVALID_CODE: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_CHECKED_IN: 409,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.TRANSIENT_NETWORK: 503,
}


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = _STATUS_BY_CODE.get(exc.code, 500)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.code.value, "message": exc.message}},
    )
