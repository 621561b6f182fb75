"""Ingestion, coverage and backfill routes."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.rest.dependencies import get_ingestion_service
from core.services.ingestion_service import IngestionService
from ingest.errors import CircuitOpenError, IngestionError, InvalidTransitionError, UpstreamError

logger = logging.getLogger(__name__)
ingestion_router = APIRouter(prefix="/api/v1", tags=["ingestion"])


class TriggerRequest(BaseModel):
    """Request model for a manual ingestion trigger."""
    symbol: str
    date: str
    type: str = "all"


class RefreshRequest(BaseModel):
    """Request model for a coverage recompute."""
    dates: Optional[List[str]] = None
    days: Optional[int] = Field(default=None, ge=1, le=366)


class GapBackfillRequest(BaseModel):
    """Request model for gap backfill."""
    symbol: str
    days: int = Field(default=30, ge=1, le=366)
    max_dates: Optional[int] = Field(default=None, ge=0)


def _failure(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def _ingestion_failure(error: IngestionError) -> JSONResponse:
    cause = error.cause
    if isinstance(cause, CircuitOpenError):
        return _failure(503, str(error), retryAfter=cause.retry_after)
    if isinstance(cause, UpstreamError):
        return _failure(502, str(error))
    return _failure(500, str(error))


@ingestion_router.post("/ingestion/trigger")
async def trigger_ingestion(
    request: TriggerRequest,
    service: IngestionService = Depends(get_ingestion_service)
):
    """
    Run one ingestion job and return the resulting coverage.

    Returns:
        {success, data} or {success: false, error}
    """
    try:
        result = await service.trigger_ingestion(request.symbol, request.date, request.type)
    except ValueError as e:
        return _failure(400, str(e))
    except InvalidTransitionError as e:
        return _failure(409, str(e))
    except IngestionError as e:
        return _ingestion_failure(e)
    return {"success": True, "data": result.to_dict()}


@ingestion_router.get("/coverage/{symbol}")
async def get_coverage(
    symbol: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    service: IngestionService = Depends(get_ingestion_service)
) -> List[Dict[str, Any]]:
    """Stored coverage for one calendar month, ordered by date."""
    records = await service.get_coverage(symbol, year, month)
    return [r.to_dict() for r in records]


@ingestion_router.post("/coverage/{symbol}/refresh")
async def refresh_coverage(
    symbol: str,
    request: Optional[RefreshRequest] = None,
    service: IngestionService = Depends(get_ingestion_service)
):
    """Recompute coverage for explicit dates or the last N days (default 30)."""
    request = request or RefreshRequest()
    try:
        records = await service.refresh_coverage(symbol, dates=request.dates, days=request.days)
    except ValueError as e:
        return _failure(400, str(e))
    return {"success": True, "data": [r.to_dict() for r in records]}


@ingestion_router.post("/backfill/gaps")
async def backfill_gaps(
    request: GapBackfillRequest,
    service: IngestionService = Depends(get_ingestion_service)
):
    """Detect and fill gaps for a symbol."""
    try:
        summary = await service.backfill_gaps(request.symbol, request.days, request.max_dates)
    except ValueError as e:
        return _failure(400, str(e))
    return {"success": True, "data": summary.to_dict()}
