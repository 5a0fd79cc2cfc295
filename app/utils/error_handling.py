"""
Compliance Cloud - Error Handling

Centralized error handling for the compliance engine:
- Custom exception hierarchy
- Standardized error responses
- Database error classification (transient vs. permanent)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    DBAPIError,
    IntegrityError,
    OperationalError,
    DataError,
    InterfaceError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("compliance_cloud.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_RULE = "INVALID_RULE"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    SCORE_NOT_FOUND = "SCORE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Rate Limiting (429)
    RATE_LIMITED = "RATE_LIMITED"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"

    # Database Errors (500/503)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class TenantNotFoundException(NotFoundException):
    """Tenant not found"""

    def __init__(self, tenant_id: Union[str, UUID]):
        super().__init__(
            resource_type="Tenant",
            resource_id=tenant_id,
            code=ErrorCode.TENANT_NOT_FOUND,
        )


class ClientNotFoundException(NotFoundException):
    """Client not found"""

    def __init__(self, client_id: Union[str, UUID]):
        super().__init__(
            resource_type="Client",
            resource_id=client_id,
            code=ErrorCode.CLIENT_NOT_FOUND,
        )


# ============================================================================
# Rule / Configuration Exceptions
# ============================================================================

class InvalidRuleException(AppException):
    """
    A catalog entry that cannot be evaluated.

    Raised for bundle items with neither (or both) references, rules without
    a target, and expiry checks that do not point at a document type.
    Callers record it and skip the entry.
    """

    def __init__(
        self,
        message: str,
        entry_id: Optional[Union[str, UUID]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if entry_id is not None:
            _details["entry_id"] = str(entry_id)
        super().__init__(
            code=ErrorCode.INVALID_RULE,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


# ============================================================================
# External Service Exceptions
# ============================================================================

class DeliveryException(AppException):
    """
    Notification delivery failure.

    transient=True means a retry may succeed (timeouts, 5xx, 429, refused
    connections); permanent failures are recorded on the notification.
    """

    def __init__(
        self,
        message: str,
        transient: bool = False,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.transient = transient
        super().__init__(
            code=ErrorCode.EMAIL_SERVICE_ERROR,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"provider": provider, "transient": transient},
            original_error=original_error,
        )


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Database error exception"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            original_error=original_error,
        )


class TransientStoreException(DatabaseException):
    """Record store temporarily unavailable; the operation may be retried."""

    def __init__(self, message: str = "Record store temporarily unavailable", original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONNECTION_ERROR,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            original_error=original_error,
        )


def is_transient_db_error(exc: BaseException) -> bool:
    """Connection-level failures (dropped connection, pool timeout, lock timeout)."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return bool(isinstance(exc, DBAPIError) and getattr(exc, "connection_invalidated", False))


def translate_db_error(exc: SQLAlchemyError) -> Exception:
    """Wrap transient SQLAlchemy errors in TransientStoreException; pass the rest through."""
    if is_transient_db_error(exc):
        return TransientStoreException(str(exc.__class__.__name__), original_error=exc)
    return exc


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    logger.error(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        429: ErrorCode.RATE_LIMITED,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
    elif is_transient_db_error(exc):
        error_message = "Database temporarily unavailable"
        error_code = ErrorCode.CONNECTION_ERROR
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
