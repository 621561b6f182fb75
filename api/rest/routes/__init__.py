"""REST API routers."""
from .ingestion import ingestion_router
from .proxy import proxy_router

__all__ = ['ingestion_router', 'proxy_router']
