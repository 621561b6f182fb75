"""
Coverage repository.

Reads and upserts symbol_daily_coverage records.
"""
import logging
from datetime import datetime
from typing import List, Optional

from psycopg2 import extras

from ingest.coverage.models import CoverageRecord

logger = logging.getLogger(__name__)

COLUMNS = """
    symbol, date, has_messages, has_analytics, has_price, message_count,
    ingestion_status, ingestion_type, lease_expires_at, error_message, last_updated
"""


def _value(enum_value):
    return enum_value.value if enum_value is not None else None


class CoverageRepository:
    """
    Repository for per (symbol, date) coverage records.

    Flag and status writes are separate upserts on (symbol, date) so that
    neither overwrites the other's columns.
    """

    def __init__(self, pool):
        """
        Initialize coverage repository.

        Args:
            pool: PostgresConnectionPool instance
        """
        self.pool = pool

    def _fetch(self, query: str, params: tuple) -> List[CoverageRecord]:
        with self.pool.get_connection() as conn:
            cur = conn.cursor(cursor_factory=extras.RealDictCursor)
            cur.execute(query, params)
            rows = cur.fetchall()
        return [CoverageRecord.from_db_row(row) for row in rows]

    def get(self, symbol: str, date: str) -> Optional[CoverageRecord]:
        records = self._fetch(
            f"SELECT {COLUMNS} FROM symbol_daily_coverage WHERE symbol = %s AND date = %s",
            (symbol, date),
        )
        return records[0] if records else None

    def list_range(self, symbol: str, start: str, end: str) -> List[CoverageRecord]:
        return self._fetch(
            f"""SELECT {COLUMNS} FROM symbol_daily_coverage
                WHERE symbol = %s AND date BETWEEN %s AND %s
                ORDER BY date""",
            (symbol, start, end),
        )

    def upsert_flags(self, record: CoverageRecord) -> CoverageRecord:
        return self._fetch(f"""
            INSERT INTO symbol_daily_coverage
            (symbol, date, has_messages, has_analytics, has_price, message_count, last_updated)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (symbol, date) DO UPDATE SET
                has_messages = EXCLUDED.has_messages,
                has_analytics = EXCLUDED.has_analytics,
                has_price = EXCLUDED.has_price,
                message_count = EXCLUDED.message_count,
                last_updated = EXCLUDED.last_updated
            RETURNING {COLUMNS}
        """, (
            record.symbol,
            record.date,
            record.has_messages,
            record.has_analytics,
            record.has_price,
            record.message_count,
            record.last_updated,
        ))[0]

    def upsert_status(self, record: CoverageRecord) -> CoverageRecord:
        return self._fetch(f"""
            INSERT INTO symbol_daily_coverage
            (symbol, date, ingestion_status, ingestion_type, lease_expires_at,
             error_message, last_updated)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (symbol, date) DO UPDATE SET
                ingestion_status = EXCLUDED.ingestion_status,
                ingestion_type = EXCLUDED.ingestion_type,
                lease_expires_at = EXCLUDED.lease_expires_at,
                error_message = EXCLUDED.error_message,
                last_updated = EXCLUDED.last_updated
            RETURNING {COLUMNS}
        """, (
            record.symbol,
            record.date,
            _value(record.ingestion_status),
            _value(record.ingestion_type),
            record.lease_expires_at,
            record.error_message,
            record.last_updated,
        ))[0]

    def list_expired_leases(self, now: datetime) -> List[CoverageRecord]:
        return self._fetch(
            f"""SELECT {COLUMNS} FROM symbol_daily_coverage
                WHERE ingestion_status = 'running' AND lease_expires_at < %s
                ORDER BY date""",
            (now,),
        )

    def delete_before(self, date: str) -> int:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM symbol_daily_coverage WHERE date < %s", (date,))
            return cur.rowcount
