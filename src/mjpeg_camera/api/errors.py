"""Standardized error handling and response schemas for the REST API.

Error Response Format:
    All errors return JSON with this structure:
    {
        "code": "CAMERA_NOT_RUNNING",
        "message": "Human-readable description",
        "details": {"camera": "front-door"}
    }

Camera Error Mapping:
    AlreadyConnectedError       -> 409 CAMERA_ALREADY_RUNNING
    NoFrameYetError             -> 503 NO_FRAME_YET
    ScreenshotCancelledError    -> 503 SNAPSHOT_CANCELLED
    ScreenshotTimeoutError      -> 504 SNAPSHOT_TIMEOUT
    CameraConnectionError       -> 502 CAMERA_UNREACHABLE
    DecodeError                 -> 502 DECODE_ERROR
    any other CameraError       -> 500 INTERNAL_ERROR

Logging Strategy:
    DEBUG - Error creation, response formatting
    INFO  - Client errors (4xx)
    WARN  - Validation errors, upstream camera failures
    ERROR - Server errors (5xx), unexpected exceptions
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional
import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from ..exceptions import (
    AlreadyConnectedError,
    CameraConnectionError,
    CameraError,
    DecodeError,
    NoFrameYetError,
    ScreenshotCancelledError,
    ScreenshotTimeoutError,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors.

    Attributes:
        code: Machine-readable error code (from ErrorCode enum)
        message: Human-readable error message for display
        details: Optional additional context
    """

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "CAMERA_NOT_RUNNING",
                    "message": "Camera is not streaming",
                    "details": {"camera": "front-door", "state": "idle"}
                }
            ]
        }
    }


# ============================================================================
# Error Codes Enum
# ============================================================================

class ErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Operation errors (409)
    CAMERA_NOT_RUNNING = "CAMERA_NOT_RUNNING"
    CAMERA_ALREADY_RUNNING = "CAMERA_ALREADY_RUNNING"

    # Upstream errors (502, 503, 504)
    CAMERA_UNREACHABLE = "CAMERA_UNREACHABLE"
    DECODE_ERROR = "DECODE_ERROR"
    NO_FRAME_YET = "NO_FRAME_YET"
    SNAPSHOT_TIMEOUT = "SNAPSHOT_TIMEOUT"
    SNAPSHOT_CANCELLED = "SNAPSHOT_CANCELLED"

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # System errors (500, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# Most specific first: RetryExhaustedError is a CameraConnectionError,
# ScreenshotTimeoutError must win over TimeoutError semantics.
CAMERA_ERROR_MAP: tuple[tuple[type[CameraError], int, ErrorCode], ...] = (
    (AlreadyConnectedError, status.HTTP_409_CONFLICT, ErrorCode.CAMERA_ALREADY_RUNNING),
    (NoFrameYetError, status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.NO_FRAME_YET),
    (ScreenshotCancelledError, status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.SNAPSHOT_CANCELLED),
    (ScreenshotTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT, ErrorCode.SNAPSHOT_TIMEOUT),
    (CameraConnectionError, status.HTTP_502_BAD_GATEWAY, ErrorCode.CAMERA_UNREACHABLE),
    (DecodeError, status.HTTP_502_BAD_GATEWAY, ErrorCode.DECODE_ERROR),
)


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        code: Error code (ErrorCode enum or string)
        message: Human-readable error message
        details: Optional additional error context

    Returns:
        Structured ErrorResponse object
    """
    if isinstance(code, ErrorCode):
        code_str = code.value
    else:
        code_str = code

    logger.debug(f"Creating error response: code={code_str}, message={message}")

    return ErrorResponse(code=code_str, message=message, details=details)


# ============================================================================
# Specialized Error Raisers
# ============================================================================

def raise_camera_not_running(camera: str, state: str) -> None:
    """Raise a standardized 409 for operations that need an active session.

    Raises:
        HTTPException: 409 error with standardized format
    """
    logger.debug(f"Camera not running: {camera} ({state})")

    error = create_error_response(
        code=ErrorCode.CAMERA_NOT_RUNNING,
        message="Camera is not streaming",
        details={"camera": camera, "state": state}
    )
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=error.model_dump()
    )


# ============================================================================
# Global Exception Handlers
# ============================================================================

async def camera_exception_handler(
    request: Request,
    exc: CameraError
) -> JSONResponse:
    """Map camera domain errors to HTTP responses.

    Returns:
        JSONResponse with standardized error format (see module mapping)
    """
    for error_type, status_code, code in CAMERA_ERROR_MAP:
        if isinstance(exc, error_type):
            break
    else:
        logger.error(
            f"Unmapped camera error: {request.method} {request.url.path} "
            f"-> {type(exc).__name__}: {exc}",
            exc_info=exc
        )
        error = create_error_response(
            code=ErrorCode.INTERNAL_ERROR,
            message="An internal server error occurred"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.model_dump()
        )

    if status_code >= 500:
        logger.warning(
            f"Camera error: {request.method} {request.url.path} "
            f"-> {status_code} {code.value}: {exc}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {status_code} {code.value}: {exc}"
        )

    error = create_error_response(
        code=code,
        message=str(exc),
        details={"error": type(exc).__name__}
    )
    return JSONResponse(status_code=status_code, content=error.model_dump())


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with standardized format (422)."""
    error_count = len(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({error_count} error(s))"
    )
    logger.debug(f"Validation errors: {exc.errors()}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ]}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error.model_dump()
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTPException with standardized format.

    Pre-formatted details pass through; anything else is wrapped.
    """
    if exc.status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail
        )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message=str(exc.detail) if exc.detail else "An error occurred"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump()
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions.

    Logs the full stack trace but returns a generic message so nothing
    sensitive (such as camera credentials) reaches the client.
    """
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {str(exc)}",
        exc_info=exc
    )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal server error occurred"
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump()
    )
