"""
Fibcalc Engine - Middleware

RequestLoggingMiddleware    one log line per request, X-Request-ID echo
OriginAllowListMiddleware   403 for browsers calling from unlisted origins
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from .logging import LogContext

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("fibcalc_request_id", default="")

CallNext = Callable[[Request], Awaitable[Response]]


def get_request_id() -> str:
    """Request ID of the request being handled, or ''."""
    return request_id_var.get()


def _client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request ID (the caller's X-Request-ID if sent, else a short
    random one), binds it to the logging context and logs the outcome:

        [ab12cd34] POST /values -> 201 (3.2ms)
    """

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request_id_var.set(request_id)
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_ip": _client_address(request),
        }

        started = time.perf_counter()
        with LogContext(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    f"[{request_id}] {request.method} {request.url.path} raised "
                    f"{type(exc).__name__}: {exc}",
                    extra=fields,
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.log(
                _level_for(response.status_code),
                f"[{request_id}] {request.method} {request.url.path} -> "
                f"{response.status_code} ({elapsed_ms:.1f}ms)",
                extra={
                    **fields,
                    "status_code": response.status_code,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class OriginAllowListMiddleware(BaseHTTPMiddleware):
    """
    Refuse requests whose Origin header is not allow-listed.

    CORSMiddleware alone only withholds the CORS response headers, so the
    handler (and its store writes) would still run. Requests with no Origin
    header (curl, server-to-server) pass through.
    """

    def __init__(self, app: ASGIApp, allowed_origins: Iterable[str]):
        super().__init__(app)
        self.allowed_origins = frozenset(origin.rstrip("/") for origin in allowed_origins)

    def is_allowed(self, origin: str | None) -> bool:
        return origin is None or origin.rstrip("/") in self.allowed_origins

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        origin = request.headers.get("origin")
        if self.is_allowed(origin):
            return await call_next(request)

        logger.warning(
            f"Rejected {request.method} {request.url.path} from origin {origin!r}",
            extra={"origin": origin, "path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=403,
            content={
                "error": "origin_not_allowed",
                "message": "Not allowed by CORS",
                "status_code": 403,
            },
        )
