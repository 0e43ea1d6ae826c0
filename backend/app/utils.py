from __future__ import annotations

from uuid import uuid4

import structlog
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import BookingError
from .logging_config import get_logger
from .settings import settings

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def add_cors(app):
    origins = settings.allow_origins
    if not origins:
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )


def add_request_id_tracing(app):
    @app.middleware("http")
    async def _request_id(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response


def add_error_handlers(app):
    @app.exception_handler(BookingError)
    async def _booking_error(request: Request, exc: BookingError):  # type: ignore[override]
        if exc.status_code >= 500:
            logger.error("booking_error", error=exc.code, detail=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
