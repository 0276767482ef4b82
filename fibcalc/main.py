"""
Fibcalc Engine - FastAPI Application (API Gateway)

Creates the FastAPI app, wires routers and middleware, and connects the
result cache, event channel and ledger on startup.

Run with: uvicorn fibcalc.main:app   (or the fibcalc-api console script)

Notes:
- Stores are injected: create_app(stores=...) accepts any implementation
  of the fibcalc.stores.base protocols; tests pass in-memory stores
- With STORE_BACKEND=memory (or embedded_worker=True) the compute worker
  runs inside the gateway process on the same in-memory channel
- Shutdown: uvicorn drains in-flight requests, the lifespan then releases
  the stores; a hard deadline forces exit if draining hangs
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .core.config import Settings, get_settings, log_startup_diagnostics
from .core.errors import setup_error_handlers
from .core.loader import load_environment
from .core.logging import configure_logging
from .core.middleware import OriginAllowListMiddleware, RequestLoggingMiddleware
from .indexes import IndexPolicy
from .routers.health import router as health_router
from .routers.values import router as values_router
from .services.values_service import ValuesService
from .stores import Stores, build_stores, open_stores
from .workers.compute import ComputeWorker

logger = logging.getLogger(__name__)

SERVICE_NAME = "Fibonacci Calculator API"


def create_app(
    settings: Settings | None = None,
    stores: Stores | None = None,
    embedded_worker: bool | None = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Settings to use (defaults to get_settings())
        stores: Store implementations (defaults to build_stores(settings))
        embedded_worker: Run a ComputeWorker in-process (defaults to True
            only for STORE_BACKEND=memory)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    stores = stores or build_stores(settings)
    if embedded_worker is None:
        embedded_worker = settings.STORE_BACKEND == "memory"

    policy = IndexPolicy(max_index=settings.FIB_MAX_INDEX)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"Starting {SERVICE_NAME} v{__version__}")

        if embedded_worker:
            ComputeWorker(
                cache=stores.cache,
                channel=stores.channel,
                policy=policy,
                topic=settings.FIB_CHANNEL,
            ).attach()
            logger.info("Embedded compute worker attached")

        # Failures propagate: uvicorn aborts startup and exits non-zero
        await open_stores(stores)
        logger.info("Cache, channel and ledger connections established")

        yield

        logger.info("Shutting down, releasing store connections...")
        await stores.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Submit Fibonacci indexes and poll for computed results.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.stores = stores
    app.state.values_service = ValuesService(
        cache=stores.cache,
        ledger=stores.ledger,
        channel=stores.channel,
        policy=policy,
        placeholder=settings.FIB_PLACEHOLDER,
        topic=settings.FIB_CHANNEL,
    )

    # ==========================================================================
    # MIDDLEWARE - last added is outermost, so CORS goes in last
    # ==========================================================================

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(OriginAllowListMiddleware, allowed_origins=settings.cors_allowed_origins)
    logger.info(f"[CORS] Allowed origins: {settings.cors_allowed_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_error_handlers(app)

    # ==========================================================================
    # ROUTERS
    # ==========================================================================

    app.include_router(health_router)
    app.include_router(values_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Service info."""
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__,
        }

    return app


# =============================================================================
# Server with a hard shutdown deadline
# =============================================================================


class GatewayServer(uvicorn.Server):
    """
    uvicorn.Server that bounds shutdown time.

    The first exit signal arms a timer; if draining and store release have
    not finished when it fires, the process exits unconditionally. An
    exception escaping to the event loop triggers the same shutdown path.
    """

    def __init__(self, config: uvicorn.Config, hard_timeout: float) -> None:
        super().__init__(config)
        self.hard_timeout = hard_timeout
        self._deadline: threading.Timer | None = None

    def handle_exit(self, sig: int, frame: Any) -> None:
        if self._deadline is None:
            logger.info(f"{signal.Signals(sig).name} received, shutting down gracefully")
            self._deadline = threading.Timer(self.hard_timeout, self._force_exit)
            self._deadline.daemon = True
            self._deadline.start()
        super().handle_exit(sig, frame)

    def _force_exit(self) -> None:
        logger.error(f"Forcing shutdown after {self.hard_timeout:.0f}s timeout")
        os._exit(1)

    async def serve(self, sockets: Any = None) -> None:
        asyncio.get_running_loop().set_exception_handler(self._on_loop_exception)
        await super().serve(sockets)

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        logger.error(
            f"Unhandled exception: {context.get('message')}",
            exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
        )
        self.handle_exit(signal.SIGTERM, None)


def run() -> None:
    """CLI entry point (fibcalc-api)."""
    load_environment()
    settings = get_settings()
    configure_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
        service_name="fibcalc-api",
    )
    log_startup_diagnostics("fibcalc-api")

    config = uvicorn.Config(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,  # keep our root handlers
        lifespan="on",  # startup failure aborts the server
        timeout_graceful_shutdown=int(settings.SHUTDOWN_TIMEOUT_SECONDS),
    )
    server = GatewayServer(config, hard_timeout=settings.SHUTDOWN_TIMEOUT_SECONDS)
    server.run()
    if not server.started:
        raise SystemExit(1)


app = create_app()


if __name__ == "__main__":
    run()
