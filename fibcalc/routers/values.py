"""
Fibcalc Engine - Values Router

GET  /values/all      every index ever requested, ascending
GET  /values/current  index -> result (or placeholder) from the cache
POST /values          submit an index for computation
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..services.values_service import ValuesService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/values", tags=["Values"])


# =============================================================================
# Request / Response Models
# =============================================================================


class IndexSubmission(BaseModel):
    """POST /values body. `index` is kept raw; the service validates it."""

    model_config = ConfigDict(extra="ignore")

    index: Any = None


class SubmissionResponse(BaseModel):
    working: bool = True
    index: int
    message: str = "Calculation started"


class LedgerEntryResponse(BaseModel):
    id: int
    number: int = Field(..., description="Requested index")
    created_at: datetime


# =============================================================================
# Dependencies
# =============================================================================


def get_values_service(request: Request) -> ValuesService:
    """The ValuesService wired into the app at startup."""
    return request.app.state.values_service


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/all", response_model=list[LedgerEntryResponse])
async def list_all_values(
    service: ValuesService = Depends(get_values_service),
) -> list[LedgerEntryResponse]:
    entries = await service.list_seen()
    return [
        LedgerEntryResponse(id=e.id, number=e.number, created_at=e.created_at) for e in entries
    ]


@router.get("/current", response_model=dict[str, str])
async def list_current_values(
    service: ValuesService = Depends(get_values_service),
) -> dict[str, str]:
    return await service.list_current()


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SubmissionResponse,
    summary="Submit an index",
    description=(
        "Writes a placeholder result, publishes the index to the worker and "
        "records it in the ledger. 400 for missing, malformed or non-integer "
        "input and for negative indexes; 422 for indexes above the maximum."
    ),
)
async def submit_value(
    submission: IndexSubmission | None = Body(default=None),
    service: ValuesService = Depends(get_values_service),
) -> SubmissionResponse:
    raw = submission.index if submission is not None else None
    accepted = await service.submit(raw)
    return SubmissionResponse(index=accepted.index)
