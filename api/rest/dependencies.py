"""Service dependency injection for the REST routers."""
import logging
from typing import Optional

from fastapi import HTTPException

from core.services.ingestion_service import IngestionService

logger = logging.getLogger(__name__)

_ingestion_service: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    """
    Dependency provider for IngestionService.

    The service is configured on app creation via configure_ingestion_service.
    """
    if _ingestion_service is None:
        raise HTTPException(
            status_code=500,
            detail="Ingestion service not initialized. Configure dependency injection on app startup."
        )
    return _ingestion_service


def configure_ingestion_service(service: Optional[IngestionService]):
    """
    Configure the ingestion service for dependency injection.

    Args:
        service: Initialized IngestionService instance (None to clear)
    """
    global _ingestion_service
    _ingestion_service = service
    if service is not None:
        logger.info("Configured IngestionService for dependency injection")
