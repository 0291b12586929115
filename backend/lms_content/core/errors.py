"""Error envelope and exception handlers.

Every error leaves the service as ``{error_code, message, details,
request_id}``. NotFound and InvalidState carry their own codes; anything
else that escapes a handler becomes ``INTERNAL_ERROR``.
"""

import uuid
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lms_content.core.app_exceptions import AppError
from lms_content.core.config import settings
from lms_content.core.logging import get_logger

logger = get_logger(__name__)


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: Any | None = None
    request_id: str | None = None


def get_request_id(request: Request) -> str:
    """``X-Request-ID`` from the caller, or a fresh one."""
    return request.headers.get("X-Request-ID") or str(uuid.uuid4())


def error_response(
    request: Request, status_code: int, error_code: str, message: str, details: Any | None = None
) -> JSONResponse:
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc, AppError):
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("app_error", extra={"event": "app_error", "code": exc.code})
        return error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(request, exc.status_code, "HTTP_ERROR", message)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        extra={"event": "unhandled_exception", "path": request.url.path, "error_type": type(exc).__name__},
    )
    if settings.ENV == "prod":
        return error_response(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "An internal server error occurred"
        )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        str(exc),
        {"type": type(exc).__name__},
    )
