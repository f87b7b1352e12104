"""Health check and metrics endpoints.

Health Status Levels:
    - healthy: Camera idle, or streaming with an open connection
    - degraded: Session active but upstream is down (reconnecting)
    - unhealthy: Camera not initialized

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Degraded status
    ERROR - Camera not initialized

Usage:
    >>> GET /health
    {"status": "healthy", "camera": {...}}

    >>> GET /health/live
    {"status": "alive"}
"""
from fastapi import APIRouter, HTTPException, Response, status
from typing import Dict, Any, Literal
import logging

from .. import metrics
from ..services import container
from .errors import ErrorCode, create_error_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]
LivenessStatus = Literal["alive"]


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, Any]:
    """Camera health with its current status.

    Raises:
        HTTPException 503: Camera not initialized (startup failed)
    """
    camera = container.camera
    if camera is None:
        logger.error("Health check: camera not initialized")
        error = create_error_response(
            code=ErrorCode.SERVICE_UNAVAILABLE,
            message="Camera not initialized"
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error.model_dump()
        )

    camera_status = camera.status()
    overall: HealthStatus = "healthy"
    if camera.is_running and not camera_status.connected:
        overall = "degraded"
        logger.warning(
            f"Health check: {overall} - {camera.name} reconnecting "
            f"(attempt {camera_status.reconnect_attempts}): {camera_status.last_error}"
        )
    else:
        logger.debug(f"Health check: {overall} - {camera.name} {camera_status.state.value}")

    return {"status": overall, "camera": camera_status.model_dump(mode="json")}


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> Dict[str, LivenessStatus]:
    """Simple liveness check for monitoring systems."""
    logger.debug("Liveness check called")
    return {"status": "alive"}


@router.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus exposition of the default registry."""
    payload, content_type = metrics.get_metrics()
    return Response(content=payload, media_type=content_type)
