"""Prometheus metrics for observability.

Provides metrics for:
- Upstream connection (opens, reconnect attempts, open gauge)
- Decode pipeline (frames decoded, frames dropped by the motion filter)
- Pipe topology (frames published per path, attached consumers, delivery failures)
- Screenshots (by mode and outcome)

All camera metrics carry a ``camera`` label with the camera name.

Logging Strategy:
    INFO  - Module initialization
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Info,
    generate_latest,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("mjpeg_camera_app", "Application information")
app_info.info({
    "version": "1.0.0",
    "name": "mjpeg-camera",
    "description": "Networked MJPEG camera re-publisher"
})

# ============================================================================
# Connection Metrics
# ============================================================================

connections_opened_total = Counter(
    "mjpeg_camera_connections_opened_total",
    "Upstream HTTP connections successfully opened",
    ["camera"]
)

connection_failures_total = Counter(
    "mjpeg_camera_connection_failures_total",
    "Failed attempts to open or keep an upstream connection",
    ["camera"]
)

reconnect_attempts_total = Counter(
    "mjpeg_camera_reconnect_attempts_total",
    "Reconnect attempts made by the retry policy",
    ["camera"]
)

connection_open = Gauge(
    "mjpeg_camera_connection_open",
    "1 while an upstream connection is open",
    ["camera"]
)

# ============================================================================
# Pipeline Metrics
# ============================================================================

frames_decoded_total = Counter(
    "mjpeg_camera_frames_decoded_total",
    "JPEG frames split out of the multipart stream",
    ["camera"]
)

motion_frames_dropped_total = Counter(
    "mjpeg_camera_motion_frames_dropped_total",
    "Frames dropped by the motion filter (no motion)",
    ["camera"]
)

# ============================================================================
# Topology Metrics
# ============================================================================

frames_published_total = Counter(
    "mjpeg_camera_frames_published_total",
    "Frames fanned out, by path (consumers or discard)",
    ["camera", "path"]
)

consumer_failures_total = Counter(
    "mjpeg_camera_consumer_failures_total",
    "Frame deliveries that raised in a consumer",
    ["camera"]
)

consumers_attached = Gauge(
    "mjpeg_camera_consumers_attached",
    "Real consumers currently attached",
    ["camera"]
)

# ============================================================================
# Screenshot Metrics
# ============================================================================

screenshots_total = Counter(
    "mjpeg_camera_screenshots_total",
    "Screenshot requests by mode (cached/transient) and outcome",
    ["camera", "mode", "outcome"]
)

# ============================================================================
# Exposition
# ============================================================================

def get_metrics() -> tuple[bytes, str]:
    """Render the default registry.

    Returns:
        (payload, content_type) for the /metrics endpoint
    """
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        raise


logger.info("Prometheus metrics initialized")
