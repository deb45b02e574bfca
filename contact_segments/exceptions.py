"""
Segmentation errors and RFC 7807 Problem Details rendering.

The segment core raises the typed exceptions below; the API boundary turns
them into "Problem Details for HTTP APIs" responses.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback
import uuid
from datetime import datetime

from contact_segments.middleware.correlation import get_request_id

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://contact-segments.dev/problems"


def _get_trace_id() -> str:
    """Get trace ID from the request context or generate a new one."""
    request_id = get_request_id()
    if request_id:
        return request_id
    return str(uuid.uuid4())[:12]


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Authentication
    UNAUTHORIZED = "AUTH_001"

    # Validation
    VALIDATION_ERROR = "VAL_001"

    # Resource
    NOT_FOUND = "RES_001"

    # Server
    INTERNAL_ERROR = "SRV_001"
    EVALUATION_ERROR = "SRV_002"


class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details response schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short, human-readable summary
        status: HTTP status code
        detail: Human-readable explanation specific to this occurrence
        instance: URI reference identifying this specific occurrence
        code: Machine-readable error code for client handling
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        errors: List of field or condition level errors
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None


TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    500: "Internal Server Error",
}


def _problem_type(code: ErrorCode) -> str:
    return f"{PROBLEM_TYPE_BASE}/{code.value.lower().replace('_', '-')}"


class SegmentationError(Exception):
    """
    Base class for every error the segment core surfaces to its callers.

    Carries the HTTP status the API boundary should answer with, so that
    services stay free of FastAPI imports.
    """

    status_code: int = 500
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.detail = detail
        self.errors = errors
        self.trace_id = _get_trace_id()
        self.timestamp = datetime.utcnow().isoformat() + "Z"

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """Convert to RFC 7807 ProblemDetail."""
        return ProblemDetail(
            type=_problem_type(self.code),
            title=TITLES.get(self.status_code, "Error"),
            status=self.status_code,
            detail=self.detail,
            instance=instance,
            code=self.code.value,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


class ValidationError(SegmentationError):
    """Criteria or request rejected (400).

    ``condition_id`` names the offending condition when one can be blamed.
    """

    status_code = 400
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, detail: str, condition_id: Optional[str] = None, field: Optional[str] = None):
        errors = None
        if condition_id is not None:
            errors = [{"condition_id": condition_id, "field": field, "message": detail}]
        super().__init__(detail, errors=errors)
        self.condition_id = condition_id
        self.field = field


class NotFoundError(SegmentationError):
    """Resource not found for the caller's organization (404)."""

    status_code = 404
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} with ID {resource_id} was not found")
        self.resource = resource
        self.resource_id = resource_id


class EvaluationError(SegmentationError):
    """Storage failure or criteria that can no longer be evaluated (500)."""

    status_code = 500
    code = ErrorCode.EVALUATION_ERROR


# Exception handlers for FastAPI

def create_problem_response(
    status_code: int,
    code: ErrorCode,
    detail: str,
    request: Request,
    errors: Optional[List[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create a RFC 7807 compliant JSON response."""
    problem = ProblemDetail(
        type=_problem_type(code),
        title=TITLES.get(status_code, "Error"),
        status=status_code,
        detail=detail,
        instance=str(request.url.path),
        code=code.value,
        timestamp=datetime.utcnow().isoformat() + "Z",
        trace_id=trace_id or _get_trace_id(),
        errors=errors,
    )

    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


def create_exception_handlers(debug: bool = False):
    """
    Create exception handlers.

    Usage in main.py:
        handlers = create_exception_handlers(settings.DEBUG)
        app.add_exception_handler(SegmentationError, handlers["segmentation"])
        app.add_exception_handler(RequestValidationError, handlers["validation"])
        app.add_exception_handler(Exception, handlers["generic"])
    """

    async def handle_segmentation_error(request: Request, exc: SegmentationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"SegmentationError: {exc.code.value} - {exc.detail}",
                extra={"trace_id": exc.trace_id, "path": request.url.path},
            )
        else:
            logger.warning(
                f"SegmentationError: {exc.code.value} - {exc.detail}",
                extra={"trace_id": exc.trace_id, "path": request.url.path},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_problem_detail(instance=str(request.url.path)).model_dump(exclude_none=True),
            media_type="application/problem+json",
        )

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle standard HTTPException with RFC 7807 response."""
        code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHORIZED,
            404: ErrorCode.NOT_FOUND,
            422: ErrorCode.VALIDATION_ERROR,
        }

        return create_problem_response(
            status_code=exc.status_code,
            code=code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            detail=str(exc.detail),
            request=request,
            headers=getattr(exc, "headers", None),
        )

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle malformed request bodies as 400 with field-level details."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        return create_problem_response(
            status_code=400,
            code=ErrorCode.VALIDATION_ERROR,
            detail="Request validation failed",
            request=request,
            errors=errors,
        )

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions with RFC 7807 response."""
        trace_id = _get_trace_id()

        logger.error(
            f"Unhandled exception: {exc}",
            extra={"trace_id": trace_id, "path": request.url.path},
        )
        logger.error(traceback.format_exc())

        # Don't expose internal details in production
        detail = str(exc) if debug else "An unexpected error occurred"

        return create_problem_response(
            status_code=500,
            code=ErrorCode.INTERNAL_ERROR,
            detail=detail,
            request=request,
            trace_id=trace_id,
        )

    return {
        "segmentation": handle_segmentation_error,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
