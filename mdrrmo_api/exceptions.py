"""
Structured exception handling.

Every error leaving the API is rendered as the same envelope the frontend
expects from successful calls, with ``success`` set to false:

    {"success": false, "message": "...", "code": "RES_001", "status": 404, ...}

Raw persistence-layer error text is never exposed outside DEBUG mode.
"""

from typing import Optional, Dict, Any, List, Iterable
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging
import uuid
from datetime import datetime

from mdrrmo_api.middleware.correlation import get_request_id

logger = logging.getLogger(__name__)


def _get_trace_id() -> str:
    """Get trace ID from correlation context or generate a new one."""
    request_id = get_request_id()
    if request_id and request_id != "unknown":
        return request_id
    return str(uuid.uuid4())[:12]


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Authentication & Authorization
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    # Validation
    VALIDATION_ERROR = "VAL_001"

    # Resource
    NOT_FOUND = "RES_001"
    CONFLICT = "RES_003"

    # Business Logic
    QUOTA_EXCEEDED = "BIZ_002"

    # Server
    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"


class ErrorResponse(BaseModel):
    """
    Error envelope returned by every failing endpoint.

    Attributes:
        success: Always false
        message: Human-readable explanation specific to this occurrence
        code: Machine-readable error code for client handling
        status: HTTP status code
        title: Short summary of the status
        instance: Request path that produced the error
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        errors: Field-level or id-level details
    """

    success: bool = False
    message: str
    code: str
    status: int
    title: str
    instance: Optional[str] = None
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = Field(default=None)


class APIException(HTTPException):
    """
    Base exception for the API.

    Usage:
        raise APIException(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail="Deployment not found",
        )
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        title: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.title = title or self._default_title(status_code)
        self.errors = errors
        self.trace_id = _get_trace_id()
        self.timestamp = datetime.utcnow().isoformat() + "Z"

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Validation Error",
            429: "Too Many Requests",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_response(self, instance: Optional[str] = None) -> ErrorResponse:
        return ErrorResponse(
            message=self.detail,
            code=self.code.value,
            status=self.status_code,
            title=self.title,
            instance=instance,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


def _id_errors(field: str, ids: Optional[Iterable[Any]]) -> Optional[List[Dict[str, Any]]]:
    if not ids:
        return None
    return [{"field": field, "ids": sorted(ids, key=str)}]


# Convenience exception classes

class ValidationError(APIException):
    """Malformed or inconsistent input (400)."""

    def __init__(
        self,
        detail: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        ids: Optional[Iterable[Any]] = None,
        field: str = "ids",
    ):
        super().__init__(
            status_code=400,
            code=ErrorCode.VALIDATION_ERROR,
            detail=detail,
            errors=errors or _id_errors(field, ids),
        )


class NotFoundError(APIException):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        resource_id: Any = None,
        ids: Optional[Iterable[Any]] = None,
        field: str = "ids",
    ):
        if resource_id is not None:
            detail = f"{resource} with ID {resource_id} was not found"
        else:
            detail = f"{resource} not found"
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=detail,
            errors=_id_errors(field, ids),
        )


class ConflictError(APIException):
    """State conflict, e.g. claiming a unit that is not available (409)."""

    def __init__(
        self,
        detail: str,
        ids: Optional[Iterable[Any]] = None,
        field: str = "ids",
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(
            status_code=409,
            code=ErrorCode.CONFLICT,
            detail=detail,
            errors=errors or _id_errors(field, ids),
        )


class UnauthorizedError(APIException):
    """Authentication required (401)."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            code=ErrorCode.UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(APIException):
    """Permission denied (403)."""

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(
            status_code=403,
            code=ErrorCode.FORBIDDEN,
            detail=detail,
        )


class RateLimitError(APIException):
    """Rate limit exceeded (429)."""

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=429,
            code=ErrorCode.QUOTA_EXCEEDED,
            detail=f"Too many attempts. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


# Unique columns, most specific first ("name" would also match "username")
_UNIQUE_COLUMNS = ("serial_number", "batch_number", "email", "name")
_DUPLICATE_MARKERS = ("UNIQUE", "Duplicate entry", "1062")


def conflict_from_integrity_error(exc: IntegrityError) -> ConflictError:
    """
    Translate a constraint violation into a 409.

    The driver message is only matched against, never echoed, since it can
    carry row values.
    """
    message = str(exc.orig)
    if not any(marker in message for marker in _DUPLICATE_MARKERS):
        return ConflictError("The change conflicts with related records")
    field = next((column for column in _UNIQUE_COLUMNS if column in message), "ids")
    return ConflictError(
        f"A record with the same {field.replace('_', ' ')} already exists",
        errors=[{"field": field, "message": "duplicate value"}],
    )


# Exception handlers for FastAPI

def create_error_response(
    status_code: int,
    code: ErrorCode,
    detail: str,
    request: Request,
    errors: Optional[List[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create the error envelope as a JSON response."""
    body = ErrorResponse(
        message=detail,
        code=code.value,
        status=status_code,
        title=APIException._default_title(status_code),
        instance=str(request.url.path),
        timestamp=datetime.utcnow().isoformat() + "Z",
        trace_id=trace_id or _get_trace_id(),
        errors=errors,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


def create_exception_handlers():
    """
    Create exception handlers.

    Usage in main.py:
        handlers = create_exception_handlers()
        app.add_exception_handler(APIException, handlers["api"])
        app.add_exception_handler(RequestValidationError, handlers["validation"])
        app.add_exception_handler(IntegrityError, handlers["integrity"])
        app.add_exception_handler(Exception, handlers["generic"])
    """

    async def handle_api_exception(request: Request, exc: APIException) -> JSONResponse:
        logger.warning(
            f"APIException: {exc.code.value} - {exc.detail}",
            extra={
                "trace_id": exc.trace_id,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(instance=request.url.path).model_dump(exclude_none=True),
            headers=exc.headers,
        )

    async def handle_http_exception(
        request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        """Render plain HTTPExceptions (e.g. from FastAPI internals) in the same envelope."""
        code_map = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHORIZED,
            403: ErrorCode.FORBIDDEN,
            404: ErrorCode.NOT_FOUND,
            409: ErrorCode.CONFLICT,
            422: ErrorCode.VALIDATION_ERROR,
            429: ErrorCode.QUOTA_EXCEEDED,
            503: ErrorCode.SERVICE_UNAVAILABLE,
        }
        code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        return create_error_response(
            status_code=exc.status_code,
            code=code,
            detail=str(exc.detail),
            request=request,
            headers=getattr(exc, "headers", None),
        )

    async def handle_validation_exception(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Handle request body/query validation with field-level details."""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

        return create_error_response(
            status_code=400,
            code=ErrorCode.VALIDATION_ERROR,
            detail="Request validation failed",
            request=request,
            errors=errors,
        )

    async def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
        """Constraint violations that escaped a service become 409s, not 500s."""
        logger.warning(f"Integrity error on {request.url.path}: {type(exc.orig).__name__}")
        return await handle_api_exception(request, conflict_from_integrity_error(exc))

    async def handle_generic_exception(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        trace_id = str(uuid.uuid4())[:12]
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={"trace_id": trace_id, "path": request.url.path},
            exc_info=exc,
        )

        from mdrrmo_api.config import settings
        # Database driver messages can carry SQL and credentials
        if settings.DEBUG and not isinstance(exc, SQLAlchemyError):
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return create_error_response(
            status_code=500,
            code=ErrorCode.INTERNAL_ERROR,
            detail=detail,
            request=request,
            trace_id=trace_id,
        )

    return {
        "api": handle_api_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "integrity": handle_integrity_error,
        "generic": handle_generic_exception,
    }
