"""FastAPI application entry point for mjpeg-camera.

Serves one networked MJPEG camera over HTTP: lifecycle control, live MJPEG
re-publication, snapshots, health and Prometheus metrics.

Architecture:
    - FastAPI async web framework, served by uvicorn
    - One Camera singleton held in services/container.py
    - Camera config from YAML + environment (config_io.py)

Lifespan:
    Startup creates the Camera (unless one was installed already, as tests
    do) and starts streaming when autostart is set. Shutdown stops the
    camera and releases its HTTP client.

Logging Strategy:
    INFO  - Application lifecycle, config summary
    WARN  - Autostart failures
    ERROR - Startup failures with stack traces
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging
import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import camera as camera_api, health
from .api.errors import (
    camera_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    general_exception_handler
)
from .config_io import load_camera_config
from .exceptions import CameraError
from .logging_config import configure_logging
from .services.camera import Camera
from .services import container

logger = logging.getLogger(__name__)

# Setup logging before anything else
configure_logging()

# ============================================================================
# Application Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup, running, shutdown."""
    logger.info("=" * 80)
    logger.info("mjpeg-camera starting...")
    logger.info("=" * 80)

    if container.camera is None:
        try:
            container.camera = Camera(load_camera_config())
        except Exception as e:
            logger.error(f"Startup error: {e}", exc_info=True)
            raise

    camera = container.camera
    if camera.config.autostart and not camera.is_running:
        try:
            await camera.start()
        except CameraError as e:
            logger.warning(f"Autostart failed for {camera.name}: {e}")

    logger.info(f"Camera ready: {camera.name} ({camera.state.value})")
    logger.info("=" * 80)

    yield

    logger.info("=" * 80)
    logger.info("mjpeg-camera shutting down...")
    logger.info("=" * 80)

    await camera.aclose()
    container.camera = None

    logger.info("mjpeg-camera shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="mjpeg-camera",
    description=(
        "Networked MJPEG camera re-publisher.\n\n"
        "Features:\n"
        "- One persistent upstream connection shared by all viewers\n"
        "- Live MJPEG re-publication\n"
        "- Snapshots with transient connections while idle\n"
        "- Optional motion filtering"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# Exception Handlers
# ============================================================================

app.add_exception_handler(CameraError, camera_exception_handler)  # type: ignore
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

# ============================================================================
# API Routers
# ============================================================================

app.include_router(health.router, tags=["health"])
app.include_router(camera_api.router, prefix="/api/camera", tags=["camera"])

# ============================================================================
# Configuration Summary
# ============================================================================

env = os.getenv("ENV", "development")
log_level = os.getenv("LOG_LEVEL", "INFO")
app_port = os.getenv("APP_PORT", "8000")

logger.info(f"Environment: {env}")
logger.debug(f"Config: ENV={env}, LOG_LEVEL={log_level}, PORT={app_port}")
