"""Service container for the camera singleton.

Holds the Camera instance so API modules can reach it without importing
main.py. Pattern: main.py creates the camera -> container stores it ->
API routes receive it through Depends(get_camera).

Tests install their own Camera here before the app starts; the lifespan
handler only creates one when the slot is empty.

Logging Strategy:
    DEBUG - Dependency injection
    ERROR - Camera requested before initialization
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .camera import Camera

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instance
# ============================================================================

camera: Camera | None = None
"""Global Camera singleton initialized during app startup."""


# ============================================================================
# Dependency Injection
# ============================================================================

def get_camera() -> Camera:
    """Get the Camera singleton for dependency injection.

    Returns:
        Global Camera instance

    Raises:
        RuntimeError: If called before app startup (camera not initialized)
    """
    if camera is None:
        logger.error("Camera dependency requested before initialization")
        raise RuntimeError(
            "Camera not initialized. "
            "Application startup may have failed."
        )

    logger.debug("Injecting Camera singleton")
    return camera
