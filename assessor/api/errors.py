"""Structured error responses for the grading API."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from assessor.errors import GradingError

logger = logging.getLogger(__name__)


def request_id_of(request: Request) -> str:
    """Request id assigned by ``RequestIdMiddleware``."""
    return str(getattr(request.state, "request_id", "") or "")


def _debug_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.debug)


def error_body(
    request: Request,
    *,
    message: str,
    code: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``{error, code, requestId, details?}`` payload."""
    body: dict[str, Any] = {"error": message, "code": code, "requestId": request_id_of(request)}
    if details:
        body["details"] = details
    return body


async def grading_error_handler(request: Request, exc: GradingError) -> JSONResponse:
    """Convert a GradingError into its structured JSON response."""
    request_id = request_id_of(request)
    logger.warning(
        "Grading request %s failed: %s %d %s",
        request_id,
        exc.code,
        exc.status_code,
        exc.message,
        exc_info=exc.cause,
    )
    details = dict(exc.public_details)
    if _debug_enabled(request):
        details.update(exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, message=exc.message, code=exc.code, details=details),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler so clients still get a structured body."""
    request_id = request_id_of(request)
    logger.exception("Unhandled error for request %s", request_id, exc_info=exc)
    details = {"cause": str(exc)[:600]} if _debug_enabled(request) else None
    return JSONResponse(
        status_code=500,
        content=error_body(request, message="Grading failed.", code="GRADE_FAILED", details=details),
        headers={"x-request-id": request_id} if request_id else None,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the grading error handlers to an application."""
    app.add_exception_handler(GradingError, grading_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
