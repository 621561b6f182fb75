"""
APScheduler integration for periodic ingestion tasks.

Provides scheduled execution of:
- Nightly gap detection and backfill (00:30 UTC)
- Stale run sweep (every 5 minutes)
- Cache and history cleanup (hourly)
"""
from __future__ import annotations

from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ingest.utils.structured_logging import get_logger

logger = get_logger(__name__)


class IngestionScheduler:
    """
    Manages scheduled ingestion tasks using APScheduler.

    Jobs run in scheduler worker threads and hand their coroutines to the
    service with ``run_sync``.
    """

    def __init__(self, service, symbols: Optional[List[str]] = None,
                 sweep_interval_minutes: int = 5, cleanup_interval_minutes: int = 60):
        """
        Initialize scheduler.

        Args:
            service: IngestionService instance
            symbols: Symbols for the nightly backfill (defaults to BACKFILL_SYMBOLS)
            sweep_interval_minutes: Interval for the stale run sweep
            cleanup_interval_minutes: Interval for cache/history cleanup
        """
        self.service = service
        self.symbols = [s.upper() for s in (symbols if symbols is not None
                                             else service.config.backfill.symbols)]
        self.sweep_interval_minutes = sweep_interval_minutes
        self.cleanup_interval_minutes = cleanup_interval_minutes

        self.scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300,
            },
            timezone='UTC',
        )

        self._setup_jobs()
        logger.info("scheduler_initialized", symbols=self.symbols)

    def _setup_jobs(self) -> None:
        self.scheduler.add_job(
            func=self.run_gap_backfill,
            trigger=CronTrigger(hour=0, minute=30, timezone='UTC'),
            id='nightly_gap_backfill',
            name='Nightly Gap Backfill',
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.run_stale_sweep,
            trigger=IntervalTrigger(minutes=self.sweep_interval_minutes),
            id='stale_run_sweep',
            name='Stale Run Sweep',
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.run_cleanup,
            trigger=IntervalTrigger(minutes=self.cleanup_interval_minutes),
            id='cleanup',
            name='Cache and History Cleanup',
            replace_existing=True,
        )

    def run_gap_backfill(self) -> int:
        """
        Backfill recent gaps for every configured symbol.

        Returns:
            Number of categories filled across symbols
        """
        if not self.symbols:
            logger.info("gap_backfill_skipped", reason="no_symbols")
            return 0

        processed = 0
        for symbol in self.symbols:
            try:
                summary = self.service.run_sync(self.service.backfill_gaps(symbol))
                processed += summary.processed
            except Exception as e:
                logger.error("gap_backfill_failed", symbol=symbol, error=str(e))
        logger.info("gap_backfill_completed", symbols=len(self.symbols), processed=processed)
        return processed

    def run_stale_sweep(self) -> int:
        try:
            return self.service.run_sync(self.service.recover_stale_runs())
        except Exception as e:
            logger.error("stale_sweep_failed", error=str(e))
            return 0

    def run_cleanup(self) -> Optional[dict]:
        try:
            return self.service.cleanup()
        except Exception as e:
            logger.error("cleanup_failed", error=str(e))
            return None

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("scheduler_started", jobs=[job.id for job in self.scheduler.get_jobs()])

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("scheduler_stopped")

    def get_jobs(self) -> list:
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]
