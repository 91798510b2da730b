"""
Image Cache Proxy API Routes

Provides endpoints for:
- Health check with storage backend info
- Proxying any path carrying a ``url`` query parameter
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel

from .proxy import ImageProxyService

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ============================================
# Response Models
# ============================================

class HealthResponse(BaseModel):
    """Health check payload."""
    status: str
    service: str
    storage: dict
    background_tasks: int
    background_stats: Optional[dict] = None


# ============================================
# Router
# ============================================

router = APIRouter(tags=["Image Proxy"])


def get_proxy_service(request: Request) -> ImageProxyService:
    return request.app.state.proxy_service


# ============================================
# Endpoints
# ============================================

@router.get("/healthz", response_model=HealthResponse)
async def health_check(service: ImageProxyService = Depends(get_proxy_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        service="image-cache-proxy",
        storage=service.store.describe(),
        background_tasks=len(service.tasks),
        background_stats=service.tasks.get_stats(),
    )


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_image(
    request: Request,
    path: str,
    service: ImageProxyService = Depends(get_proxy_service),
) -> Response:
    """
    Serve an image through the storage cache.

    Only the ``url`` query parameter is read; method and path are ignored.

    Example:
        GET /?url=https://example.com/image.jpg
    """
    return await service.handle(request)
