"""FastAPI application exposing the ingestion service."""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.rest.dependencies import configure_ingestion_service, get_ingestion_service
from api.rest.routes import ingestion_router, proxy_router
from core.services.ingestion_service import IngestionService

logger = logging.getLogger(__name__)


def create_app(service: Optional[IngestionService] = None,
               enable_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        service: Pre-built service (tests); created from the environment otherwise
        enable_scheduler: Start APScheduler jobs (default from ENABLE_SCHEDULER)
    """
    if service is None:
        use_memory = os.getenv("STORAGE_BACKEND", "postgres").lower() == "memory"
        service = IngestionService(use_memory=use_memory)
    if enable_scheduler is None:
        enable_scheduler = os.getenv("ENABLE_SCHEDULER", "false").lower() == "true"

    configure_ingestion_service(service)
    app = FastAPI(title="Sentiment Ingestion Service", version="1.0.0")
    app.include_router(ingestion_router)
    app.include_router(proxy_router)
    app.state.scheduler = None

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400,
                            content={"success": False, "error": "Invalid request",
                                     "details": jsonable_encoder(exc.errors())})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal error"})

    @app.on_event("startup")
    async def startup_event() -> None:
        service.bind_loop(asyncio.get_running_loop())
        if enable_scheduler:
            from ingest.scheduler import IngestionScheduler
            app.state.scheduler = IngestionScheduler(service)
            app.state.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        service.bind_loop(None)
        service.close()

    @app.get("/health")
    def health(svc: IngestionService = Depends(get_ingestion_service)) -> Dict:
        status = svc.health()
        if app.state.scheduler is not None:
            status["jobs"] = app.state.scheduler.get_jobs()
        return status

    return app
