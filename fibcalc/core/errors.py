"""
Fibcalc Engine - Error Handling

Every error leaves the API as the same JSON body (ErrorResponse).
Client errors (4xx) are validation failures and are never logged as server
faults; server errors (5xx) are logged with a traceback.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .middleware import get_request_id

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Model
# =============================================================================


class ErrorResponse(BaseModel):
    """JSON body of every non-2xx response except the origin rejection."""

    error: str  # stable code, e.g. index_too_large
    message: str  # shown to the user as-is
    status_code: int
    request_id: str | None = None
    detail: str | None = None  # Exception text, development only


# =============================================================================
# Error Codes
# =============================================================================

# Client errors (4xx)
ERROR_INDEX_MISSING = "index_missing"
ERROR_INDEX_MALFORMED = "index_malformed"
ERROR_INDEX_TOO_SMALL = "index_too_small"
ERROR_INDEX_TOO_LARGE = "index_too_large"
ERROR_INDEX_NOT_INTEGER = "index_not_integer"
ERROR_BAD_REQUEST = "bad_request"
ERROR_NOT_FOUND = "not_found"
ERROR_METHOD_NOT_ALLOWED = "method_not_allowed"
ERROR_VALIDATION = "validation_error"

# Server errors (5xx)
ERROR_INTERNAL = "internal_error"
ERROR_STORE_UNAVAILABLE = "store_unavailable"
ERROR_SERVICE_UNAVAILABLE = "service_unavailable"

_HTTP_ERROR_CODES = {
    400: ERROR_BAD_REQUEST,
    404: ERROR_NOT_FOUND,
    405: ERROR_METHOD_NOT_ALLOWED,
    500: ERROR_INTERNAL,
    503: ERROR_SERVICE_UNAVAILABLE,
}


# =============================================================================
# Exceptions
# =============================================================================


class FibcalcError(Exception):
    """Base exception for fibcalc errors that map onto an HTTP response."""

    error_code: str = ERROR_INTERNAL
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IndexValidationError(FibcalcError):
    """Submitted index was rejected; always client-recoverable."""

    status_code = 400


class MissingIndexError(IndexValidationError):
    error_code = ERROR_INDEX_MISSING

    def __init__(self, message: str = "Index is required"):
        super().__init__(message)


class MalformedIndexError(IndexValidationError):
    error_code = ERROR_INDEX_MALFORMED

    def __init__(self, message: str = "Index must be a valid number"):
        super().__init__(message)


class IndexTooSmallError(IndexValidationError):
    error_code = ERROR_INDEX_TOO_SMALL

    def __init__(self, message: str = "Index must be non-negative"):
        super().__init__(message)


class IndexTooLargeError(IndexValidationError):
    error_code = ERROR_INDEX_TOO_LARGE
    status_code = 422

    def __init__(self, max_index: int):
        super().__init__(f"Index too high (maximum: {max_index})")
        self.max_index = max_index


class NonIntegerIndexError(IndexValidationError):
    error_code = ERROR_INDEX_NOT_INTEGER

    def __init__(self, message: str = "Index must be an integer"):
        super().__init__(message)


class StoreUnavailableError(FibcalcError):
    """Result Cache or Durable Ledger could not serve the request."""

    error_code = ERROR_STORE_UNAVAILABLE
    status_code = 500

    def __init__(self, store: str, message: str | None = None):
        super().__init__(message or f"Failed to reach {store}")
        self.store = store


class ChannelDownError(FibcalcError):
    """Event channel exhausted its reconnect budget; the process must exit."""

    error_code = ERROR_SERVICE_UNAVAILABLE
    status_code = 503


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    detail: str | None = None,
) -> JSONResponse:
    request_id = get_request_id()
    body = ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        request_id=request_id or None,
        detail=detail,
    )

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )


async def fibcalc_exception_handler(request: Request, exc: FibcalcError) -> JSONResponse:
    """Map FibcalcError subclasses onto their status and error code."""
    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
            extra={
                "request_id": get_request_id(),
                "path": request.url.path,
                "error_code": exc.error_code,
            },
            exc_info=exc.__cause__ is not None,
        )
    else:
        logger.info(
            f"Rejected {request.method} {request.url.path}: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.error_code},
        )

    detail = None
    if exc.status_code >= 500 and _is_development(request) and exc.__cause__ is not None:
        detail = str(exc.__cause__)

    return create_error_response(
        status_code=exc.status_code,
        error=exc.error_code,
        message=exc.message,
        detail=detail,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle FastAPI/Starlette HTTP exceptions (404 for unknown routes, ...)."""
    error_code = _HTTP_ERROR_CODES.get(exc.status_code, ERROR_INTERNAL)

    if exc.status_code == 404:
        message = "Route not found"
    elif isinstance(exc.detail, dict):
        message = exc.detail.get("message", str(exc.detail))
    else:
        message = str(exc.detail)

    return create_error_response(
        status_code=exc.status_code,
        error=error_code,
        message=message,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body was not valid JSON or not a JSON object."""
    logger.info(
        f"Request validation failed on {request.url.path}: {len(exc.errors())} errors",
        extra={"path": request.url.path},
    )
    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        error=ERROR_VALIDATION,
        message="Request body must be a JSON object",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: 500 with a fixed message; the exception text only in dev."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        extra={
            "request_id": get_request_id(),
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=ERROR_INTERNAL,
        message="Internal server error",
        detail=str(exc) if _is_development(request) else None,
    )


def _is_development(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_development)


def setup_error_handlers(app: FastAPI) -> None:
    """Install the handlers above on `app`."""
    app.add_exception_handler(FibcalcError, fibcalc_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
