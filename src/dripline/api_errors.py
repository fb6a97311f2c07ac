"""Structured API error responses for Dripline.

Every error leaves the API in one shape:

    {"error": {"error_code": ..., "message": ..., "details": {...}, "request_id": ...}}

Domain exceptions raised by repositories and services are mapped to HTTP
status codes by their ``code``; route handlers use the helper constructors
below for errors that originate in the HTTP layer itself.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dripline.errors import DriplineError

# =============================================================================
# Response Models
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context about the error",
    )
    request_id: str | None = Field(None, description="Request ID for tracing (if available)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error_code": "LIMIT_EXCEEDED",
                    "message": "Cannot enroll 1500 contacts; the limit is 1000",
                    "details": {"limit": 1000, "requested": 1500},
                    "request_id": "abc12345",
                }
            ]
        }
    }


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: ErrorDetail = Field(..., description="Error details")


# =============================================================================
# Error Code Mapping
# =============================================================================


ERROR_STATUS_MAP: dict[str, int] = {
    # Validation (400, 422)
    "VALIDATION": 400,
    "LIMIT_EXCEEDED": 422,
    "STEP_EXECUTION": 422,
    # Not Found (404)
    "NOT_FOUND": 404,
    # Conflict (409)
    "CONFLICT": 409,
    "CONCURRENCY_CONFLICT": 409,
    # Server Errors (500, 502)
    "DRIPLINE_ERROR": 500,
    "TRANSIENT_DISPATCH": 502,
}


def get_status_code(error_code: str) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_STATUS_MAP.get(error_code, 500)


# =============================================================================
# Exception Handlers
# =============================================================================


def dripline_error_to_response(
    error: DriplineError,
    request_id: str | None = None,
) -> JSONResponse:
    """Convert a DriplineError to a structured JSON response."""
    content = ErrorResponse(
        error=ErrorDetail(
            error_code=error.code,
            message=error.message,
            details=error.details,
            request_id=request_id,
        )
    )
    return JSONResponse(
        status_code=get_status_code(error.code),
        content=content.model_dump(),
    )


async def dripline_exception_handler(
    request: Request,
    exc: DriplineError,
) -> JSONResponse:
    """FastAPI exception handler for DriplineError."""
    return dripline_error_to_response(exc, request.headers.get("X-Request-ID"))


# =============================================================================
# API Exception Classes
# =============================================================================


class APIException(HTTPException):
    """HTTPException with a structured error body."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.error_details = details or {}
        super().__init__(status_code=status_code, detail=message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Convert to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(
                error_code=self.error_code,
                message=self.message,
                details=self.error_details,
                request_id=request_id,
            )
        )


async def api_exception_handler(
    request: Request,
    exc: APIException,
) -> JSONResponse:
    """FastAPI exception handler for APIException."""
    request_id = request.headers.get("X-Request-ID")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )


# =============================================================================
# Common Response Definitions
# =============================================================================


COMMON_RESPONSES = {
    400: {
        "model": ErrorResponse,
        "description": "Bad Request - Invalid input or parameters",
    },
    404: {
        "model": ErrorResponse,
        "description": "Not Found - Resource does not exist",
    },
    409: {
        "model": ErrorResponse,
        "description": "Conflict - Resource is in use or was modified concurrently",
    },
    422: {
        "model": ErrorResponse,
        "description": "Unprocessable - Request exceeds a limit or fails validation",
    },
    500: {
        "model": ErrorResponse,
        "description": "Internal Server Error",
    },
}


def responses(*status_codes: int) -> dict:
    """Generate responses dict for specific status codes.

    Usage:
        @router.get("/workflows/{id}", responses=responses(404, 500))
        def get_workflow(id: str): ...
    """
    return {code: COMMON_RESPONSES[code] for code in status_codes if code in COMMON_RESPONSES}


CRUD_RESPONSES = responses(400, 404, 500)
ENROLLMENT_RESPONSES = responses(400, 404, 422, 500)


# =============================================================================
# Helper Functions
# =============================================================================


def not_found(resource: str, identifier: str) -> APIException:
    """Create a not found exception."""
    return APIException(
        status_code=404,
        error_code="NOT_FOUND",
        message=f"{resource} '{identifier}' not found",
        details={"resource": resource, "identifier": identifier},
    )


def bad_request(message: str, details: dict[str, Any] | None = None) -> APIException:
    """Create a bad request exception."""
    return APIException(
        status_code=400,
        error_code="VALIDATION",
        message=message,
        details=details,
    )


def conflict(message: str, details: dict[str, Any] | None = None) -> APIException:
    """Create a conflict exception."""
    return APIException(
        status_code=409,
        error_code="CONFLICT",
        message=message,
        details=details,
    )
