"""
Schema management for the sentiment database.

Creates tables and indexes idempotently; there is no migration framework.
"""
import logging

logger = logging.getLogger(__name__)


TABLES = {
    'response_cache': """
        CREATE TABLE IF NOT EXISTS response_cache (
            id BIGSERIAL PRIMARY KEY,
            cache_key TEXT NOT NULL UNIQUE,
            action TEXT NOT NULL,
            symbol TEXT,
            category TEXT,
            payload JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            CHECK (expires_at > created_at)
        );
    """,
    'symbol_daily_coverage': """
        CREATE TABLE IF NOT EXISTS symbol_daily_coverage (
            symbol TEXT NOT NULL,
            date DATE NOT NULL,
            has_messages BOOLEAN NOT NULL DEFAULT FALSE,
            has_analytics BOOLEAN NOT NULL DEFAULT FALSE,
            has_price BOOLEAN NOT NULL DEFAULT FALSE,
            message_count INTEGER NOT NULL DEFAULT 0,
            ingestion_status TEXT
                CHECK (ingestion_status IN ('queued', 'running', 'completed', 'failed')),
            ingestion_type TEXT,
            lease_expires_at TIMESTAMPTZ,
            error_message TEXT,
            last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (symbol, date)
        );
    """,
    'sentiment_history': """
        CREATE TABLE IF NOT EXISTS sentiment_history (
            id BIGSERIAL PRIMARY KEY,
            symbol TEXT NOT NULL,
            recorded_at TIMESTAMPTZ NOT NULL,
            sentiment_score INTEGER NOT NULL,
            bullish_count INTEGER NOT NULL DEFAULT 0,
            bearish_count INTEGER NOT NULL DEFAULT 0,
            neutral_count INTEGER NOT NULL DEFAULT 0,
            message_volume INTEGER NOT NULL DEFAULT 0,
            UNIQUE (symbol, recorded_at)
        );
    """,
    'narrative_history': """
        CREATE TABLE IF NOT EXISTS narrative_history (
            id BIGSERIAL PRIMARY KEY,
            symbol TEXT NOT NULL,
            recorded_at TIMESTAMPTZ NOT NULL,
            period_type TEXT NOT NULL DEFAULT 'daily',
            narratives JSONB NOT NULL,
            dominant_narrative TEXT,
            message_count INTEGER NOT NULL DEFAULT 0,
            UNIQUE (symbol, period_type, recorded_at)
        );
    """,
    'emotion_history': """
        CREATE TABLE IF NOT EXISTS emotion_history (
            id BIGSERIAL PRIMARY KEY,
            symbol TEXT NOT NULL,
            recorded_at TIMESTAMPTZ NOT NULL,
            period_type TEXT NOT NULL DEFAULT 'daily',
            emotions JSONB NOT NULL,
            dominant_emotion TEXT,
            message_count INTEGER NOT NULL DEFAULT 0,
            UNIQUE (symbol, period_type, recorded_at)
        );
    """,
    'price_history': """
        CREATE TABLE IF NOT EXISTS price_history (
            id BIGSERIAL PRIMARY KEY,
            symbol TEXT NOT NULL,
            date DATE NOT NULL,
            open DOUBLE PRECISION,
            high DOUBLE PRECISION,
            low DOUBLE PRECISION,
            close DOUBLE PRECISION NOT NULL,
            volume BIGINT,
            source TEXT,
            UNIQUE (symbol, date)
        );
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_response_cache_expires ON response_cache (expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_coverage_status ON symbol_daily_coverage "
    "(ingestion_status, lease_expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_sentiment_history_symbol_time "
    "ON sentiment_history (symbol, recorded_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_narrative_history_symbol_time "
    "ON narrative_history (symbol, recorded_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_emotion_history_symbol_time "
    "ON emotion_history (symbol, recorded_at DESC);",
]


class SchemaManager:
    """
    Creates the cache, coverage and history tables.

    Responsibilities:
    - Create tables with their natural-key unique constraints
    - Create indexes used by coverage queries and cleanup
    """

    def __init__(self, pool):
        """
        Initialize schema manager.

        Args:
            pool: PostgresConnectionPool instance
        """
        self.pool = pool

    def initialize_schema(self):
        """Initialize complete database schema."""
        with self.pool.get_connection() as conn:
            cur = conn.cursor()
            for name, ddl in TABLES.items():
                cur.execute(ddl)
                logger.debug(f"Ensured table {name}")
            for ddl in INDEXES:
                cur.execute(ddl)
        logger.info("Database schema initialized")
