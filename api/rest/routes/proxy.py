"""Read-through proxy routes for quotes and feed actions."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.rest.dependencies import get_ingestion_service
from core.services.ingestion_service import IngestionService
from ingest.proxy import ProxyResponse

logger = logging.getLogger(__name__)
proxy_router = APIRouter(prefix="/api/v1", tags=["proxy"])


def _to_response(result: ProxyResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body,
                        headers=result.headers)


@proxy_router.get("/quote")
async def get_quote(
    symbol: str = Query(..., min_length=1),
    time_range: Optional[str] = Query(default="1D", alias="timeRange"),
    service: IngestionService = Depends(get_ingestion_service)
) -> JSONResponse:
    """Price quote with X-Cache / X-Circuit / X-Degraded headers."""
    try:
        result = await service.quote(symbol, time_range)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return _to_response(result)


@proxy_router.get("/feed/{action}")
async def get_feed(
    action: str,
    symbol: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    start: Optional[str] = None,
    end: Optional[str] = None,
    type: Optional[str] = None,
    service: IngestionService = Depends(get_ingestion_service)
) -> JSONResponse:
    """Message-feed action (messages, symbols, stats, analytics, sentiment, trending)."""
    params = {"symbol": symbol, "limit": limit, "start": start, "end": end, "type": type}
    try:
        result = await service.feed(action, params)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except RuntimeError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    return _to_response(result)
