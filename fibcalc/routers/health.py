"""
Fibcalc Engine - Health Check Router

- GET /health - Liveness probe: 200 while the process is up
- GET /ready  - Readiness probe: 200 only if cache and ledger answer a ping
"""

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__

READINESS_TIMEOUT = 2.0

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


class LivenessResponse(BaseModel):
    status: str
    timestamp: str
    version: str


class ReadinessResponse(BaseModel):
    ready: bool
    cache: str
    ledger: str
    timestamp: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _probe(ping) -> str:
    try:
        ok = await asyncio.wait_for(ping(), timeout=READINESS_TIMEOUT)
    except asyncio.TimeoutError:
        return f"timeout ({READINESS_TIMEOUT}s)"
    return "ok" if ok else "unreachable"


@router.get("/health", response_model=LivenessResponse, summary="Liveness probe")
async def liveness_check() -> LivenessResponse:
    """Never touches external dependencies."""
    return LivenessResponse(status="ok", timestamp=_now(), version=__version__)


@router.get("/ready", response_model=ReadinessResponse, summary="Readiness probe")
async def readiness_check(request: Request) -> JSONResponse:
    stores = request.app.state.stores
    cache_status, ledger_status = await asyncio.gather(
        _probe(stores.cache.ping),
        _probe(stores.ledger.ping),
    )
    ready = cache_status == "ok" and ledger_status == "ok"
    if not ready:
        logger.warning(f"Readiness failed: cache={cache_status} ledger={ledger_status}")

    body = ReadinessResponse(ready=ready, cache=cache_status, ledger=ledger_status, timestamp=_now())
    return JSONResponse(status_code=200 if ready else 503, content=body.model_dump())
