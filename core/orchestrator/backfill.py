"""Backfill orchestrator: coverage-aware ingestion triggers and gap filling."""
import asyncio
import weakref
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from ingest.backfill.calendar import expected_dates, parse_date
from ingest.backfill.jobs import IngestionJobRunner, IngestionOutcome
from ingest.coverage.models import CoverageRecord, GapWindow, IngestionType
from ingest.coverage.tracker import CoverageTracker
from ingest.errors import IngestError, IngestionError
from ingest.utils.structured_logging import get_logger

logger = get_logger(__name__)


FEED_CATEGORIES = (IngestionType.MESSAGES.value, IngestionType.ANALYTICS.value)


def group_categories(missing: List[str]) -> List[Tuple[IngestionType, List[str]]]:
    """
    Split missing categories into ingestion runs.

    Messages and analytics share one run so the day's messages are fetched
    once; price runs on its own.
    """
    feed = [c for c in missing if c in FEED_CATEGORIES]
    runs = []
    if len(feed) == 1:
        runs.append((IngestionType(feed[0]), feed))
    elif feed:
        runs.append((IngestionType.ALL, feed))
    runs.extend((IngestionType(c), [c]) for c in missing if c not in FEED_CATEGORIES)
    return runs


@dataclass
class IngestionResult:
    """Completed ingestion run and the coverage it produced."""
    symbol: str
    date: str
    ingestion_type: IngestionType
    outcome: IngestionOutcome
    coverage: CoverageRecord

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'date': self.date,
            'type': self.ingestion_type.value,
            'outcome': self.outcome.to_dict(),
            'coverage': self.coverage.to_dict(),
        }


@dataclass
class BackfillSummary:
    """Counts for one gap backfill run."""
    symbol: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: int = 0
    dates: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'remaining': self.remaining,
            'dates': list(self.dates),
            'errors': list(self.errors),
        }


class BackfillOrchestrator:
    """
    Drives ingestion jobs through the coverage lifecycle.

    Each trigger walks queued -> running -> completed|failed. Triggers for
    the same (symbol, date) in this process run one at a time.
    """

    def __init__(self, tracker: CoverageTracker, runner: IngestionJobRunner,
                 max_concurrency: int = 3, default_days: int = 30,
                 max_dates_per_run: int = 10):
        """
        Initialize orchestrator.

        Args:
            tracker: Coverage tracker
            runner: Ingestion job runner
            max_concurrency: Dates backfilled in parallel
            default_days: Lookback used when a caller gives no window
            max_dates_per_run: Dates processed per backfill_gaps call
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.tracker = tracker
        self.runner = runner
        self.max_concurrency = max_concurrency
        self.default_days = default_days
        self.max_dates_per_run = max_dates_per_run
        # Entries drop out once no trigger holds or waits on the lock
        self._locks = weakref.WeakValueDictionary()

        logger.info("backfill_orchestrator_initialized",
                    max_concurrency=max_concurrency,
                    default_days=default_days)

    def _lock_for(self, symbol: str, day: str) -> asyncio.Lock:
        key = (symbol, day)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def trigger_ingestion(self, symbol: str, day: str,
                                ingestion_type: str = 'all') -> IngestionResult:
        """
        Ingest one date for a symbol and update its coverage.

        ``all`` re-fetches every category even when data exists; other types
        skip categories that are already covered.

        Raises:
            ValueError: Bad symbol, date or type
            InvalidTransitionError: Stored status forbids a new run
            IngestionError: The job failed (record marked failed)
        """
        if not symbol or not symbol.strip():
            raise ValueError("symbol is required")
        symbol = symbol.strip().upper()
        day = parse_date(day)
        kind = IngestionType(ingestion_type)
        return await self._ingest(symbol, day, kind, kind.categories, kind.forces_refetch)

    async def _ingest(self, symbol: str, day: str, kind: IngestionType,
                      categories: List[str], force: bool) -> IngestionResult:
        log = logger.bind(symbol=symbol, date=day, type=kind.value)

        async with self._lock_for(symbol, day):
            await asyncio.to_thread(self.tracker.mark_queued, symbol, day, kind)
            record = await asyncio.to_thread(self.tracker.mark_running, symbol, day)
            log.info("ingestion_started", categories=categories,
                     lease_expires_at=record.lease_expires_at)

            try:
                existing = await asyncio.to_thread(self.tracker.compute_date, symbol, day)
                outcome = await self.runner.run(symbol, day, kind, force=force,
                                                existing=existing, categories=categories)
                await asyncio.to_thread(self.tracker.compute_date, symbol, day)
                coverage = await asyncio.to_thread(self.tracker.mark_completed, symbol, day)
            except Exception as e:
                log.error("ingestion_failed", error=str(e), error_type=type(e).__name__)
                try:
                    await asyncio.to_thread(self.tracker.mark_failed, symbol, day, str(e))
                except Exception as mark_error:
                    log.error("mark_failed_error", error=str(mark_error))
                raise IngestionError(symbol, day, kind.value, e) from e

        log.info("ingestion_completed",
                 records=outcome.records,
                 skipped=outcome.skipped,
                 messages=outcome.message_count)
        return IngestionResult(symbol=symbol, date=day, ingestion_type=kind,
                               outcome=outcome, coverage=coverage)

    async def refresh_coverage(self, symbol: str, days: Optional[int] = None,
                               dates: Optional[List[str]] = None,
                               today: Optional[date] = None) -> List[CoverageRecord]:
        """Recompute coverage for explicit dates or the last ``days`` business days."""
        symbol = symbol.strip().upper()
        if dates:
            targets = [parse_date(d) for d in dates]
        else:
            targets = expected_dates(days or self.default_days, today)
        return await asyncio.to_thread(self.tracker.compute_coverage, symbol, targets)

    async def detect_gaps(self, symbol: str, days: Optional[int] = None,
                          today: Optional[date] = None) -> List[GapWindow]:
        """
        Find business dates with missing categories.

        Args:
            symbol: Ticker symbol
            days: Lookback in calendar days (today excluded)
            today: Reference date (UTC today)

        Returns:
            GapWindow per date with at least one missing category, oldest first
        """
        symbol = symbol.strip().upper()
        dates = expected_dates(self.default_days if days is None else days, today)
        records = await asyncio.to_thread(self.tracker.compute_coverage, symbol, dates)
        by_date = {r.date: r for r in records}

        gaps = []
        for day in dates:
            record = by_date.get(day)
            if record is None:
                # Coverage could not be computed; retried on the next scan
                continue
            missing = record.missing_categories()
            if missing:
                gaps.append(GapWindow(symbol=symbol, date=day, missing=missing))

        logger.info("gaps_detected", symbol=symbol, expected=len(dates), gaps=len(gaps))
        return gaps

    async def backfill_gaps(self, symbol: str, days: Optional[int] = None,
                            max_dates: Optional[int] = None,
                            today: Optional[date] = None) -> BackfillSummary:
        """
        Fill detected gaps, most recent dates first.

        Dates run concurrently up to ``max_concurrency``. Within a date the
        feed categories share one run and price runs after it; counts are per
        category.
        """
        symbol = symbol.strip().upper()
        gaps = await self.detect_gaps(symbol, days, today)
        limit = max_dates if max_dates is not None else self.max_dates_per_run
        selected = sorted(gaps, key=lambda g: g.date, reverse=True)[:max(0, limit)]

        summary = BackfillSummary(symbol=symbol, remaining=len(gaps) - len(selected),
                                  dates=[g.date for g in selected])
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fill(gap: GapWindow):
            async with semaphore:
                for kind, categories in group_categories(gap.missing):
                    try:
                        result = await self._ingest(symbol, gap.date, kind, categories,
                                                    force=False)
                    except IngestError as e:
                        summary.failed += len(categories)
                        summary.errors.extend({'date': gap.date, 'type': category,
                                               'error': str(e)} for category in categories)
                        continue
                    for category in categories:
                        if category in result.outcome.skipped:
                            summary.skipped += 1
                        else:
                            summary.processed += 1

        await asyncio.gather(*(fill(gap) for gap in selected))

        logger.info("backfill_gaps_completed", **summary.to_dict())
        return summary

    async def recover_stale_runs(self) -> int:
        """
        Re-run records whose lease expired while running.

        Returns:
            Number of records re-triggered successfully
        """
        reclaimed = await asyncio.to_thread(self.tracker.reclaim_stale)
        recovered = 0
        for record in reclaimed:
            kind = record.ingestion_type or IngestionType.ALL
            try:
                await self.trigger_ingestion(record.symbol, record.date, kind.value)
                recovered += 1
            except IngestError as e:
                logger.error("stale_run_recovery_failed", symbol=record.symbol,
                             date=record.date, error=str(e))

        if reclaimed:
            logger.info("stale_runs_recovered", reclaimed=len(reclaimed), recovered=recovered)
        return recovered
