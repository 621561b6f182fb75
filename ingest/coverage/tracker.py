"""
Coverage tracker.

Derives per-day completeness flags from the history tables and records the
ingestion lifecycle of each (symbol, date).
"""
import calendar
import logging
from datetime import date as date_type, datetime, time as dt_time, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from ingest.errors import InvalidTransitionError

from .models import CoverageRecord, IngestionStatus, IngestionType, can_transition

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_window(day: str):
    """UTC window [day 00:00, day+1 00:00) for a YYYY-MM-DD date."""
    start = datetime.combine(date_type.fromisoformat(day), dt_time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class CoverageTracker:
    """
    Coverage flags and ingestion status per (symbol, date).

    Flag writes and status writes go through separate upserts so a recompute
    never clobbers a running job's status and vice versa.
    """

    def __init__(self, coverage_repo, history_repo, lease_seconds: float = 15 * 60,
                 clock: Callable[[], datetime] = utcnow):
        """
        Initialize coverage tracker.

        Args:
            coverage_repo: CoverageRepository implementation
            history_repo: HistoryRepository implementation
            lease_seconds: How long a running job may hold its record
            clock: Returns the current timezone-aware UTC datetime
        """
        self.coverage_repo = coverage_repo
        self.history_repo = history_repo
        self.lease_seconds = lease_seconds
        self.clock = clock

    def derive(self, symbol: str, day: str) -> CoverageRecord:
        """Compute flags for one date from the history tables (no write)."""
        start, end = day_window(day)
        sentiment_rows, message_volume = self.history_repo.sentiment_stats(symbol, start, end)
        analytics_rows = self.history_repo.analytics_count(symbol, start, end)
        has_price = self.history_repo.has_price(symbol, day)
        return CoverageRecord(
            symbol=symbol,
            date=day,
            has_messages=sentiment_rows > 0,
            has_analytics=analytics_rows > 0,
            has_price=bool(has_price),
            message_count=int(message_volume or 0),
        )

    def compute_date(self, symbol: str, day: str) -> CoverageRecord:
        """
        Recompute and persist flags for one date.

        last_updated only moves when a derived value changed, so repeated
        recomputes leave the record identical.
        """
        symbol = symbol.upper()
        derived = self.derive(symbol, day)
        existing = self.coverage_repo.get(symbol, day)

        if existing is not None and existing.flags() == derived.flags():
            return existing

        if existing is not None:
            existing.has_messages = derived.has_messages
            existing.has_analytics = derived.has_analytics
            existing.has_price = derived.has_price
            existing.message_count = derived.message_count
            derived = existing
        derived.last_updated = self.clock()
        return self.coverage_repo.upsert_flags(derived)

    def compute_coverage(self, symbol: str, dates: Iterable[str]) -> List[CoverageRecord]:
        """
        Recompute flags for each date.

        A date whose queries fail is logged and left out of the result.
        """
        records = []
        for day in dates:
            try:
                records.append(self.compute_date(symbol, day))
            except Exception as e:
                logger.error(f"Coverage computation failed for {symbol} {day}: {e}")
        return records

    def get_record(self, symbol: str, day: str) -> Optional[CoverageRecord]:
        return self.coverage_repo.get(symbol.upper(), day)

    def get_coverage(self, symbol: str, year: int, month: int) -> List[CoverageRecord]:
        """
        Read stored coverage for one calendar month, ordered by date.

        Raises:
            ValueError: Invalid month
        """
        if not 1 <= month <= 12:
            raise ValueError(f"month must be 1-12, got {month}")
        last_day = calendar.monthrange(year, month)[1]
        start = date_type(year, month, 1).isoformat()
        end = date_type(year, month, last_day).isoformat()
        return self.coverage_repo.list_range(symbol.upper(), start, end)

    def _write_status(self, symbol: str, day: str, target: IngestionStatus,
                      **fields) -> CoverageRecord:
        symbol = symbol.upper()
        record = self.coverage_repo.get(symbol, day)
        current = record.ingestion_status if record else None
        if not can_transition(current, target):
            raise InvalidTransitionError(symbol, day, current, target)

        if record is None:
            record = CoverageRecord(symbol=symbol, date=day)
        record.ingestion_status = target
        for name, value in fields.items():
            setattr(record, name, value)
        record.last_updated = self.clock()
        return self.coverage_repo.upsert_status(record)

    def mark_queued(self, symbol: str, day: str, ingestion_type: IngestionType) -> CoverageRecord:
        return self._write_status(symbol, day, IngestionStatus.QUEUED,
                                  ingestion_type=ingestion_type, lease_expires_at=None,
                                  error_message=None)

    def mark_running(self, symbol: str, day: str,
                     lease_seconds: Optional[float] = None) -> CoverageRecord:
        lease = self.lease_seconds if lease_seconds is None else lease_seconds
        return self._write_status(symbol, day, IngestionStatus.RUNNING,
                                  lease_expires_at=self.clock() + timedelta(seconds=lease))

    def mark_completed(self, symbol: str, day: str) -> CoverageRecord:
        return self._write_status(symbol, day, IngestionStatus.COMPLETED,
                                  lease_expires_at=None, error_message=None)

    def mark_failed(self, symbol: str, day: str, error: str) -> CoverageRecord:
        return self._write_status(symbol, day, IngestionStatus.FAILED,
                                  lease_expires_at=None, error_message=str(error)[:1000])

    def reclaim_stale(self, now: Optional[datetime] = None) -> List[CoverageRecord]:
        """Move running records with an expired lease back to queued."""
        now = now or self.clock()
        reclaimed = []
        for record in self.coverage_repo.list_expired_leases(now):
            record.ingestion_status = IngestionStatus.QUEUED
            record.lease_expires_at = None
            record.error_message = 'lease expired'
            record.last_updated = now
            reclaimed.append(self.coverage_repo.upsert_status(record))
            logger.warning(f"Reclaimed stale run for {record.symbol} {record.date}")
        return reclaimed

    def reset_status(self, symbol: str, day: str) -> Optional[CoverageRecord]:
        """Clear the ingestion status of a record (manual recovery)."""
        record = self.coverage_repo.get(symbol.upper(), day)
        if record is None:
            return None
        record.ingestion_status = None
        record.lease_expires_at = None
        record.error_message = None
        record.last_updated = self.clock()
        return self.coverage_repo.upsert_status(record)

    def cleanup(self, retention_days: int = 90) -> int:
        """Delete coverage records older than the retention window."""
        cutoff = (self.clock() - timedelta(days=retention_days)).date().isoformat()
        deleted = self.coverage_repo.delete_before(cutoff)
        logger.info(f"Deleted {deleted} coverage records before {cutoff}")
        return deleted
