"""YAML camera configuration with environment overrides.

Loads the CameraConfig for the service from a YAML file and the process
environment.

File Format:
    camera:
      name: front-door
      url: http://192.168.1.20/videostream.cgi
      user: admin
      password: secret
      motion: true
      retry:
        max_delay: 10

Resolution Order (later wins):
    1. CameraConfig defaults
    2. YAML file at $CAMERA_CONFIG (default /app/config/camera.yml)
    3. Environment: CAMERA_URL, CAMERA_NAME, CAMERA_USER, CAMERA_PASSWORD,
       CAMERA_MOTION, CAMERA_AUTOSTART

Failure Handling:
    - Missing file: environment only
    - Unparsable YAML or wrong structure: logged, environment only
    - Invalid values: pydantic ValidationError propagates

Logging Strategy:
    DEBUG - Applied overrides
    INFO  - Config source
    WARN  - Invalid file structure
    ERROR - YAML parsing failures
"""
from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Final, Mapping

import yaml

from .models.camera import CameraConfig
from .utils.strings import mask_url_credentials

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_CONFIG_PATH: Final[Path] = Path("/app/config/camera.yml")
CAMERA_KEY: Final[str] = "camera"

ENV_OVERRIDES: Final[dict[str, str]] = {
    "CAMERA_URL": "url",
    "CAMERA_NAME": "name",
    "CAMERA_USER": "user",
    "CAMERA_PASSWORD": "password",
    "CAMERA_MOTION": "motion",
    "CAMERA_AUTOSTART": "autostart",
}

_BOOL_FIELDS: Final[frozenset[str]] = frozenset({"motion", "autostart"})


# ============================================================================
# Helpers
# ============================================================================

def get_config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    return Path(env.get("CAMERA_CONFIG", str(DEFAULT_CONFIG_PATH)))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def read_config_file(path: Path) -> dict[str, Any]:
    """Read the camera section of a YAML file.

    Returns:
        Camera settings dict (empty if the file is missing or unusable)
    """
    if not path.exists():
        logger.info(f"No config file at {path}, using environment only")
        return {}

    try:
        with io.open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {path}: {e}", exc_info=True)
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Invalid config format in {path} (expected mapping), ignoring")
        return {}

    section = data.get(CAMERA_KEY, {}) or {}
    if not isinstance(section, dict):
        logger.warning(f"Invalid '{CAMERA_KEY}' section in {path} (expected mapping), ignoring")
        return {}

    logger.info(f"Loaded camera config from {path}")
    return dict(section)


# ============================================================================
# Loading
# ============================================================================

def load_camera_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CameraConfig:
    """Build the CameraConfig from file and environment.

    Args:
        path: YAML file (default: $CAMERA_CONFIG or /app/config/camera.yml)
        env: Environment mapping (default: os.environ)

    Raises:
        pydantic.ValidationError: Missing url or invalid values
    """
    env = os.environ if env is None else env
    path = path or get_config_path(env)

    settings = read_config_file(path)
    for var, field in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        settings[field] = _parse_bool(value) if field in _BOOL_FIELDS else value
        logger.debug(f"Config override from {var}")

    config = CameraConfig(**settings)
    logger.info(
        f"Camera config: name={config.name}, url={mask_url_credentials(config.url)}, "
        f"motion={config.motion}, autostart={config.autostart}"
    )
    return config
