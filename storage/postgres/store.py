"""PostgreSQL store - facade over the pool, schema and repositories."""
import logging

from .pool import PostgresConnectionPool
from .repositories import CoverageRepository, HistoryRepository, ResponseCacheRepository
from .schema import SchemaManager

logger = logging.getLogger(__name__)


class PostgresStore:
    """
    Owns the connection pool and hands out repositories.

    Delegates to:
    - PostgresConnectionPool: Connection management
    - SchemaManager: DDL operations
    - Repository classes: Data access
    """

    def __init__(self, pool: PostgresConnectionPool, initialize: bool = True):
        self.pool = pool
        self.schema_manager = SchemaManager(pool)
        self.response_cache = ResponseCacheRepository(pool)
        self.coverage = CoverageRepository(pool)
        self.history = HistoryRepository(pool)

        if initialize:
            try:
                self.schema_manager.initialize_schema()
            except Exception as e:
                logger.error(f"Failed to initialize schema: {e}")
                raise

    @classmethod
    def from_config(cls, config, **kwargs) -> 'PostgresStore':
        """Create a store from a DatabaseConfig."""
        return cls(PostgresConnectionPool.from_config(config), **kwargs)

    def close(self):
        self.pool.close()
