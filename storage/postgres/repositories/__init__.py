"""PostgreSQL repositories."""
from .coverage import CoverageRepository
from .history import HistoryRepository
from .response_cache import ResponseCacheRepository

__all__ = ['CoverageRepository', 'HistoryRepository', 'ResponseCacheRepository']
