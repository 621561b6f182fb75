"""
Response cache repository.

Persisted (L2) tier of the response cache.
"""
import logging
from typing import Optional

from psycopg2 import extras

from ingest.cache.memory import CacheEntry, parse_cache_key

logger = logging.getLogger(__name__)


class ResponseCacheRepository:
    """
    Repository for cached upstream responses.

    Responsibilities:
    - Read entries regardless of expiry (freshness is decided by the cache)
    - Upsert entries on cache_key
    - Delete long-expired rows
    """

    def __init__(self, pool):
        """
        Initialize response cache repository.

        Args:
            pool: PostgresConnectionPool instance
        """
        self.pool = pool

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                SELECT cache_key, payload, EXTRACT(EPOCH FROM created_at),
                       EXTRACT(EPOCH FROM expires_at), category
                FROM response_cache
                WHERE cache_key = %s
            """, (cache_key,))
            row = cur.fetchone()

        if row is None:
            return None
        return CacheEntry(key=row[0], payload=row[1], created_at=float(row[2]),
                          expires_at=float(row[3]), category=row[4])

    def upsert(self, entry: CacheEntry) -> None:
        action, params = parse_cache_key(entry.key)
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                INSERT INTO response_cache
                (cache_key, action, symbol, category, payload, created_at, expires_at)
                VALUES (%s, %s, %s, %s, %s, TO_TIMESTAMP(%s), TO_TIMESTAMP(%s))
                ON CONFLICT (cache_key) DO UPDATE SET
                    category = EXCLUDED.category,
                    payload = EXCLUDED.payload,
                    created_at = EXCLUDED.created_at,
                    expires_at = EXCLUDED.expires_at
            """, (
                entry.key,
                action,
                params.get('symbol'),
                entry.category,
                extras.Json(entry.payload),
                entry.created_at,
                entry.expires_at,
            ))

    def delete_expired(self, before: float) -> int:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM response_cache WHERE expires_at < TO_TIMESTAMP(%s)", (before,))
            deleted = cur.rowcount
        logger.debug(f"Deleted {deleted} response_cache rows")
        return deleted
