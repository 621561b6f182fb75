"""
In-memory repositories.

Implement the storage protocols without a database; used by tests, dry
runs and the CLI ``--memory`` mode.
"""
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from common.models.data_models import DailyBar
from ingest.cache.memory import CacheEntry
from ingest.coverage.models import CoverageRecord, IngestionStatus


class InMemoryResponseCacheRepository:
    """Persisted cache stand-in keyed by cache_key."""

    def __init__(self):
        self._rows: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._rows.get(cache_key)
            return replace(entry) if entry else None

    def upsert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._rows[entry.key] = replace(entry)

    def delete_expired(self, before: float) -> int:
        with self._lock:
            expired = [k for k, e in self._rows.items() if e.expires_at < before]
            for key in expired:
                del self._rows[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryCoverageRepository:
    """Coverage records keyed by (symbol, date)."""

    def __init__(self):
        self._rows: Dict[Tuple[str, str], CoverageRecord] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str, date: str) -> Optional[CoverageRecord]:
        with self._lock:
            record = self._rows.get((symbol, date))
            return replace(record) if record else None

    def list_range(self, symbol: str, start: str, end: str) -> List[CoverageRecord]:
        with self._lock:
            records = [replace(r) for (s, d), r in self._rows.items()
                       if s == symbol and start <= d <= end]
        return sorted(records, key=lambda r: r.date)

    def upsert_flags(self, record: CoverageRecord) -> CoverageRecord:
        with self._lock:
            stored = self._rows.get((record.symbol, record.date))
            if stored is None:
                stored = CoverageRecord(symbol=record.symbol, date=record.date)
            stored = replace(
                stored,
                has_messages=record.has_messages,
                has_analytics=record.has_analytics,
                has_price=record.has_price,
                message_count=record.message_count,
                last_updated=record.last_updated,
            )
            self._rows[(record.symbol, record.date)] = stored
            return replace(stored)

    def upsert_status(self, record: CoverageRecord) -> CoverageRecord:
        with self._lock:
            stored = self._rows.get((record.symbol, record.date))
            if stored is None:
                stored = CoverageRecord(symbol=record.symbol, date=record.date)
            stored = replace(
                stored,
                ingestion_status=record.ingestion_status,
                ingestion_type=record.ingestion_type,
                lease_expires_at=record.lease_expires_at,
                error_message=record.error_message,
                last_updated=record.last_updated,
            )
            self._rows[(record.symbol, record.date)] = stored
            return replace(stored)

    def list_expired_leases(self, now: datetime) -> List[CoverageRecord]:
        with self._lock:
            return [replace(r) for r in self._rows.values()
                    if r.ingestion_status == IngestionStatus.RUNNING
                    and r.lease_expires_at is not None and r.lease_expires_at < now]

    def delete_before(self, date: str) -> int:
        with self._lock:
            old = [k for k in self._rows if k[1] < date]
            for key in old:
                del self._rows[key]
            return len(old)


class InMemoryHistoryRepository:
    """History tables held as dict rows keyed by their unique columns."""

    def __init__(self):
        self.sentiment: Dict[Tuple[str, datetime], Dict[str, Any]] = {}
        self.narratives: Dict[Tuple[str, str, datetime], Dict[str, Any]] = {}
        self.emotions: Dict[Tuple[str, str, datetime], Dict[str, Any]] = {}
        self.prices: Dict[Tuple[str, str], DailyBar] = {}
        self._lock = threading.Lock()

    def sentiment_stats(self, symbol: str, start: datetime, end: datetime) -> Tuple[int, int]:
        with self._lock:
            rows = [r for (s, ts), r in self.sentiment.items() if s == symbol and start <= ts < end]
        return len(rows), sum(int(r.get('message_volume') or 0) for r in rows)

    def analytics_count(self, symbol: str, start: datetime, end: datetime) -> int:
        with self._lock:
            narratives = sum(1 for (s, _, ts) in self.narratives if s == symbol and start <= ts < end)
            emotions = sum(1 for (s, _, ts) in self.emotions if s == symbol and start <= ts < end)
        return narratives + emotions

    def has_price(self, symbol: str, date: str) -> bool:
        with self._lock:
            return (symbol, date) in self.prices

    def upsert_sentiment(self, row: Dict[str, Any]) -> None:
        with self._lock:
            self.sentiment[(row['symbol'], row['recorded_at'])] = dict(row)

    def upsert_narratives(self, row: Dict[str, Any]) -> None:
        with self._lock:
            key = (row['symbol'], row.get('period_type', 'daily'), row['recorded_at'])
            self.narratives[key] = dict(row)

    def upsert_emotions(self, row: Dict[str, Any]) -> None:
        with self._lock:
            key = (row['symbol'], row.get('period_type', 'daily'), row['recorded_at'])
            self.emotions[key] = dict(row)

    def upsert_price_bars(self, bars: List[DailyBar]) -> int:
        with self._lock:
            for bar in bars:
                self.prices[(bar.symbol, bar.date)] = bar
        return len(bars)

    def delete_before(self, cutoff: datetime) -> int:
        cutoff_date = cutoff.astimezone(timezone.utc).date().isoformat()
        deleted = 0
        with self._lock:
            for table in (self.sentiment, self.narratives, self.emotions):
                old = [k for k in table if k[-1] < cutoff]
                for key in old:
                    del table[key]
                deleted += len(old)
            old_prices = [k for k in self.prices if k[1] < cutoff_date]
            for key in old_prices:
                del self.prices[key]
            deleted += len(old_prices)
        return deleted
