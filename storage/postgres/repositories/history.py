"""
History repository.

Sentiment, narrative, emotion and price history tables.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from psycopg2 import extras

from common.models.data_models import DailyBar

logger = logging.getLogger(__name__)


class HistoryRepository:
    """
    Repository for the history tables coverage is derived from.

    Responsibilities:
    - Existence and volume queries per UTC day window
    - Idempotent upserts on each table's natural key
    - Retention cleanup
    """

    def __init__(self, pool):
        """
        Initialize history repository.

        Args:
            pool: PostgresConnectionPool instance
        """
        self.pool = pool

    def sentiment_stats(self, symbol: str, start: datetime, end: datetime) -> Tuple[int, int]:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                SELECT COUNT(*), COALESCE(SUM(message_volume), 0)
                FROM sentiment_history
                WHERE symbol = %s AND recorded_at >= %s AND recorded_at < %s
            """, (symbol, start, end))
            count, volume = cur.fetchone()
        return int(count), int(volume)

    def analytics_count(self, symbol: str, start: datetime, end: datetime) -> int:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                SELECT
                    (SELECT COUNT(*) FROM narrative_history
                     WHERE symbol = %s AND recorded_at >= %s AND recorded_at < %s)
                  + (SELECT COUNT(*) FROM emotion_history
                     WHERE symbol = %s AND recorded_at >= %s AND recorded_at < %s)
            """, (symbol, start, end, symbol, start, end))
            return int(cur.fetchone()[0])

    def has_price(self, symbol: str, date: str) -> bool:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT EXISTS (SELECT 1 FROM price_history WHERE symbol = %s AND date = %s)",
                (symbol, date),
            )
            return bool(cur.fetchone()[0])

    def upsert_sentiment(self, row: Dict[str, Any]) -> None:
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                INSERT INTO sentiment_history
                (symbol, recorded_at, sentiment_score, bullish_count, bearish_count,
                 neutral_count, message_volume)
                VALUES (%(symbol)s, %(recorded_at)s, %(sentiment_score)s, %(bullish_count)s,
                        %(bearish_count)s, %(neutral_count)s, %(message_volume)s)
                ON CONFLICT (symbol, recorded_at) DO UPDATE SET
                    sentiment_score = EXCLUDED.sentiment_score,
                    bullish_count = EXCLUDED.bullish_count,
                    bearish_count = EXCLUDED.bearish_count,
                    neutral_count = EXCLUDED.neutral_count,
                    message_volume = EXCLUDED.message_volume
            """, row)

    def upsert_narratives(self, row: Dict[str, Any]) -> None:
        params = dict(row, narratives=extras.Json(row.get('narratives') or []))
        params.setdefault('period_type', 'daily')
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                INSERT INTO narrative_history
                (symbol, recorded_at, period_type, narratives, dominant_narrative, message_count)
                VALUES (%(symbol)s, %(recorded_at)s, %(period_type)s, %(narratives)s,
                        %(dominant_narrative)s, %(message_count)s)
                ON CONFLICT (symbol, period_type, recorded_at) DO UPDATE SET
                    narratives = EXCLUDED.narratives,
                    dominant_narrative = EXCLUDED.dominant_narrative,
                    message_count = EXCLUDED.message_count
            """, params)

    def upsert_emotions(self, row: Dict[str, Any]) -> None:
        params = dict(row, emotions=extras.Json(row.get('emotions') or []))
        params.setdefault('period_type', 'daily')
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            cur.execute("""
                INSERT INTO emotion_history
                (symbol, recorded_at, period_type, emotions, dominant_emotion, message_count)
                VALUES (%(symbol)s, %(recorded_at)s, %(period_type)s, %(emotions)s,
                        %(dominant_emotion)s, %(message_count)s)
                ON CONFLICT (symbol, period_type, recorded_at) DO UPDATE SET
                    emotions = EXCLUDED.emotions,
                    dominant_emotion = EXCLUDED.dominant_emotion,
                    message_count = EXCLUDED.message_count
            """, params)

    def upsert_price_bars(self, bars: List[DailyBar]) -> int:
        """
        Write daily bars to price_history.

        Returns:
            Number of bars written
        """
        if not bars:
            return 0

        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            data = [
                (b.symbol, b.date, b.open, b.high, b.low, b.close, b.volume, b.source)
                for b in bars
            ]
            extras.execute_batch(cur, """
                INSERT INTO price_history
                (symbol, date, open, high, low, close, volume, source)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (symbol, date) DO UPDATE SET
                    open = EXCLUDED.open,
                    high = EXCLUDED.high,
                    low = EXCLUDED.low,
                    close = EXCLUDED.close,
                    volume = EXCLUDED.volume,
                    source = EXCLUDED.source
            """, data, page_size=500)

        logger.debug(f"Upserted {len(bars)} price bars")
        return len(bars)

    def delete_before(self, cutoff: datetime) -> int:
        deleted = 0
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            for table in ('sentiment_history', 'narrative_history', 'emotion_history'):
                cur.execute(f"DELETE FROM {table} WHERE recorded_at < %s", (cutoff,))
                deleted += cur.rowcount
            cur.execute("DELETE FROM price_history WHERE date < %s", (cutoff.date(),))
            deleted += cur.rowcount
        logger.info(f"Deleted {deleted} history rows before {cutoff.isoformat()}")
        return deleted
