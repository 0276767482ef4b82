"""
Fibcalc Engine - Core Module

Configuration, logging, middleware and error handling shared by the
gateway and the worker.
"""

from .errors import (
    ChannelDownError,
    ErrorResponse,
    FibcalcError,
    IndexValidationError,
    StoreUnavailableError,
    setup_error_handlers,
)
from .middleware import OriginAllowListMiddleware, RequestLoggingMiddleware, get_request_id

__all__ = [
    # Middleware
    "OriginAllowListMiddleware",
    "RequestLoggingMiddleware",
    "get_request_id",
    # Errors
    "ChannelDownError",
    "ErrorResponse",
    "FibcalcError",
    "IndexValidationError",
    "StoreUnavailableError",
    "setup_error_handlers",
]
