"""Storage interfaces using Protocol for duck typing."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from common.models.data_models import DailyBar
from ingest.cache.memory import CacheEntry
from ingest.coverage.models import CoverageRecord


@runtime_checkable
class ResponseCacheRepository(Protocol):
    """
    Persisted (L2) response cache.

    Any backend (PostgreSQL, in-memory) can implement this interface for
    use by TieredCache.
    """

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        """
        Read an entry regardless of expiry.

        Returns:
            The entry, or None when absent
        """
        ...

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace the entry for ``entry.key``."""
        ...

    def delete_expired(self, before: float) -> int:
        """
        Delete entries whose expires_at is earlier than ``before`` (epoch seconds).

        Returns:
            Number of rows deleted
        """
        ...


@runtime_checkable
class CoverageRepository(Protocol):
    """Per (symbol, date) coverage records."""

    def get(self, symbol: str, date: str) -> Optional[CoverageRecord]:
        ...

    def list_range(self, symbol: str, start: str, end: str) -> List[CoverageRecord]:
        """Records with start <= date <= end, ordered by date."""
        ...

    def upsert_flags(self, record: CoverageRecord) -> CoverageRecord:
        """Write derived flags and last_updated; status columns untouched."""
        ...

    def upsert_status(self, record: CoverageRecord) -> CoverageRecord:
        """Write status columns; derived flags untouched on existing rows."""
        ...

    def list_expired_leases(self, now: datetime) -> List[CoverageRecord]:
        """Running records whose lease_expires_at is before ``now``."""
        ...

    def delete_before(self, date: str) -> int:
        ...


@runtime_checkable
class HistoryRepository(Protocol):
    """
    History tables that coverage is derived from.

    Windows are half-open: start <= recorded_at < end.
    """

    def sentiment_stats(self, symbol: str, start: datetime, end: datetime) -> Tuple[int, int]:
        """
        Returns:
            (row count, sum of message_volume)
        """
        ...

    def analytics_count(self, symbol: str, start: datetime, end: datetime) -> int:
        """Narrative plus emotion rows in the window."""
        ...

    def has_price(self, symbol: str, date: str) -> bool:
        ...

    def upsert_sentiment(self, row: Dict[str, Any]) -> None:
        """
        Args:
            row: symbol, recorded_at, sentiment_score, bullish_count,
                 bearish_count, neutral_count, message_volume
        """
        ...

    def upsert_narratives(self, row: Dict[str, Any]) -> None:
        """
        Args:
            row: symbol, recorded_at, period_type, narratives,
                 dominant_narrative, message_count
        """
        ...

    def upsert_emotions(self, row: Dict[str, Any]) -> None:
        """
        Args:
            row: symbol, recorded_at, period_type, emotions,
                 dominant_emotion, message_count
        """
        ...

    def upsert_price_bars(self, bars: List[DailyBar]) -> int:
        """Returns number of bars written."""
        ...

    def delete_before(self, cutoff: datetime) -> int:
        """Delete history rows older than ``cutoff`` across all tables."""
        ...
