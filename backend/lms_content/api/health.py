"""Health endpoints."""

from typing import Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lms_content.cache.redis import CacheService
from lms_content.core.errors import get_request_id

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"


class CacheHealthResponse(BaseModel):
    """Cache probe result. ``disabled`` is not a failure."""

    status: Literal["ok", "degraded", "disabled"]
    enabled: bool
    healthy: bool
    last_error: str | None = None
    request_id: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Simple health check endpoint. Returns 200 if the API is running.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/health/cache",
    response_model=CacheHealthResponse,
    summary="Cache health",
    description="Round-trips a sentinel key through the cache backend. Returns 503 when it fails.",
)
async def cache_health(request: Request) -> JSONResponse:
    cache: CacheService = request.app.state.cache
    request_id = get_request_id(request)

    if not cache.enabled:
        body = CacheHealthResponse(status="disabled", enabled=False, healthy=False, request_id=request_id)
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump())

    healthy = await cache.is_healthy()
    body = CacheHealthResponse(
        status="ok" if healthy else "degraded",
        enabled=True,
        healthy=healthy,
        last_error=cache.health.last_error,
        request_id=request_id,
    )
    code = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body.model_dump())
