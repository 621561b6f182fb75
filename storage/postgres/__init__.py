"""PostgreSQL persistence for cache, coverage and history tables."""
from .pool import PostgresConnectionPool
from .store import PostgresStore

__all__ = ['PostgresConnectionPool', 'PostgresStore']
