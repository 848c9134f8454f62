"""
FastAPI application entry point for the edge functions.
"""

from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from edge.config import Settings, get_settings
from edge.errors import AppError, error_response, register_exception_handlers
from edge.routes import router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Disciplefy Edge Functions (FastAPI)", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "apikey", "content-type", "x-client-info"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        content_length = request.headers.get("content-length", "")
        if content_length.isdigit() and int(content_length) > settings.max_body_bytes:
            response = error_response(
                AppError(
                    "PAYLOAD_TOO_LARGE",
                    f"Request body exceeds {settings.max_body_bytes} bytes",
                    413,
                ),
                request,
            )
        else:
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "[%s] %s %s -> %d (%.1f ms)",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    register_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
