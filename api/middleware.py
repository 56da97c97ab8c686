"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from connectors.request import new_request_id
from utils.errors import KinError

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def register_middleware(app: FastAPI) -> None:
    """Attach the app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        request.state.request_id = new_request_id()
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        ctx = getattr(request.state, "ctx", None)
        nb_reqs_out = ctx.nb_reqs_out if ctx is not None else 0
        response.headers["X-Request-Id"] = request.state.request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.info(
            "%s %s %s %d (%d out) — %.3fs",
            request.state.request_id, request.method, request.url.path,
            response.status_code, nb_reqs_out, elapsed,
        )
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Map typed errors to their JSON envelope; anything else is a 500."""

    @app.exception_handler(KinError)
    async def kin_error_handler(request: Request, exc: KinError) -> JSONResponse:
        if exc.status_code < 500:
            logger.warning("%s %s", _request_id(request), exc.message)
        else:
            logger.error("%s %s", _request_id(request), exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s unexpected error: %s", _request_id(request), exc)
        return JSONResponse(
            status_code=500,
            content={"code": KinError.code, "error": "unexpected error, please retry later"},
        )
