"""Service facade wiring clients, resilience, cache, coverage and backfill together."""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Coroutine, Dict, List, Optional

from common.config.settings import (
    ANALYTICS_CIRCUIT,
    FEED_CIRCUIT,
    PRICE_CIRCUIT,
    IngestionConfig,
)
from core.orchestrator.backfill import BackfillOrchestrator, BackfillSummary, IngestionResult
from ingest.backfill.jobs import IngestionJobRunner
from ingest.cache.memory import InMemoryCacheStore
from ingest.cache.policy import CachePolicy
from ingest.cache.tiered import TieredCache
from ingest.clients.analytics_client import AnalyticsClient
from ingest.clients.http_client import UpstreamClient
from ingest.clients.message_client import MessageClient
from ingest.clients.price_client import PriceClient
from ingest.coverage.models import CoverageRecord, GapWindow
from ingest.coverage.tracker import CoverageTracker
from ingest.proxy import ProxyResponse, UpstreamProxy
from ingest.resilience.circuit_breaker import CircuitBreaker
from ingest.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

CIRCUIT_IDS = (PRICE_CIRCUIT, FEED_CIRCUIT, ANALYTICS_CIRCUIT)


class IngestionService:
    """High-level facade exposing proxy reads, ingestion triggers and backfill."""

    def __init__(
        self,
        config: Optional[IngestionConfig] = None,
        use_memory: bool = False,
        coverage_repo=None,
        history_repo=None,
        cache_repo=None,
        price_client: Optional[PriceClient] = None,
        message_client: Optional[MessageClient] = None,
        analytics_client: Optional[AnalyticsClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Service configuration (defaults to IngestionConfig.default())
            use_memory: Use in-memory repositories instead of PostgreSQL
            coverage_repo, history_repo, cache_repo: Pre-built repositories
            price_client, message_client, analytics_client: Pre-built clients
            breaker: Shared circuit breaker
            retry: Retry policy for upstream calls
        """
        self.config = config or IngestionConfig.default()
        self._store = None
        self._upstreams: List[UpstreamClient] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        if coverage_repo is None or history_repo is None:
            if use_memory:
                from storage.memory import (
                    InMemoryCoverageRepository,
                    InMemoryHistoryRepository,
                    InMemoryResponseCacheRepository,
                )
                coverage_repo = coverage_repo or InMemoryCoverageRepository()
                history_repo = history_repo or InMemoryHistoryRepository()
                cache_repo = cache_repo or InMemoryResponseCacheRepository()
            else:
                from storage.postgres.store import PostgresStore
                self._store = PostgresStore.from_config(self.config.database)
                coverage_repo = coverage_repo or self._store.coverage
                history_repo = history_repo or self._store.history
                cache_repo = cache_repo or self._store.response_cache

        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.config.circuit.failure_threshold,
            recovery_timeout=self.config.circuit.recovery_timeout,
        )
        self.retry = retry or RetryPolicy.from_config(self.config.retry)

        policy = CachePolicy.from_config(self.config.cache)
        self.cache = TieredCache(
            l1=InMemoryCacheStore(max_items=self.config.cache.max_items,
                                  trim_ratio=self.config.cache.trim_ratio, policy=policy),
            l2=cache_repo,
            policy=policy,
        )

        self.price_client = price_client or self._build_price_client()
        self.message_client = message_client or self._build_message_client()
        self.analytics_client = analytics_client or self._build_analytics_client()

        self.proxy = UpstreamProxy(self.cache, self.breaker, self.retry,
                                   price_client=self.price_client,
                                   message_client=self.message_client)

        backfill = self.config.backfill
        self.history_repo = history_repo
        self.tracker = CoverageTracker(coverage_repo, history_repo,
                                       lease_seconds=backfill.lease_seconds)
        self.runner = IngestionJobRunner(
            history_repo,
            self.breaker,
            self.retry,
            message_client=self.message_client,
            analytics_client=self.analytics_client,
            price_client=self.price_client,
            min_messages=backfill.min_messages,
            message_limit=backfill.message_limit,
        )
        self.orchestrator = BackfillOrchestrator(
            self.tracker,
            self.runner,
            max_concurrency=backfill.max_concurrency,
            default_days=backfill.default_days,
            max_dates_per_run=backfill.max_dates_per_run,
        )
        logger.info("Ingestion service initialized (%s storage)",
                    "memory" if self._store is None else "postgres")

    # ------------------------------------------------------------------
    # Client construction
    # ------------------------------------------------------------------
    def _upstream(self, base_url: str, headers: Optional[Dict[str, str]] = None) -> UpstreamClient:
        http = self.config.http
        merged = {'User-Agent': http.user_agent}
        merged.update(headers or {})
        client = UpstreamClient(base_url, rate_limit=http.rate_limit, timeout=http.timeout,
                                max_connections=http.max_connections, headers=merged)
        self._upstreams.append(client)
        return client

    def _build_price_client(self) -> PriceClient:
        return PriceClient(self._upstream(self.config.upstream.price_url))

    def _build_message_client(self) -> Optional[MessageClient]:
        upstream = self.config.upstream
        if not upstream.stocktwits_url:
            logger.warning("STOCKTWITS_BASE_URL not set; message feed disabled")
            return None
        headers = {'Content-Type': 'application/json'}
        if upstream.stocktwits_api_key:
            headers['x-api-key'] = upstream.stocktwits_api_key
        return MessageClient(self._upstream(upstream.stocktwits_url, headers))

    def _build_analytics_client(self) -> Optional[AnalyticsClient]:
        upstream = self.config.upstream
        if not upstream.analytics_url:
            logger.warning("ANALYTICS_API_URL not set; analytics ingestion disabled")
            return None
        headers = {}
        if upstream.analytics_api_key:
            headers['Authorization'] = f"Bearer {upstream.analytics_api_key}"
        return AnalyticsClient(self._upstream(upstream.analytics_url, headers))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def quote(self, symbol: str, time_range: Optional[str] = None) -> ProxyResponse:
        return await self.proxy.quote(symbol, time_range)

    async def feed(self, action: str, params: Optional[Dict[str, Any]] = None) -> ProxyResponse:
        return await self.proxy.feed(action, params)

    async def trigger_ingestion(self, symbol: str, day: str,
                                ingestion_type: str = 'all') -> IngestionResult:
        return await self.orchestrator.trigger_ingestion(symbol, day, ingestion_type)

    async def get_coverage(self, symbol: str, year: int, month: int) -> List[CoverageRecord]:
        return await asyncio.to_thread(self.tracker.get_coverage, symbol, year, month)

    async def refresh_coverage(self, symbol: str, dates: Optional[List[str]] = None,
                               days: Optional[int] = None) -> List[CoverageRecord]:
        return await self.orchestrator.refresh_coverage(symbol, days=days, dates=dates)

    async def detect_gaps(self, symbol: str, days: Optional[int] = None,
                          today: Optional[date] = None) -> List[GapWindow]:
        return await self.orchestrator.detect_gaps(symbol, days, today)

    async def backfill_gaps(self, symbol: str, days: Optional[int] = None,
                            max_dates: Optional[int] = None) -> BackfillSummary:
        return await self.orchestrator.backfill_gaps(symbol, days, max_dates)

    async def recover_stale_runs(self) -> int:
        return await self.orchestrator.recover_stale_runs()

    async def reset_status(self, symbol: str, day: str) -> Optional[CoverageRecord]:
        return await asyncio.to_thread(self.tracker.reset_status, symbol, day)

    def cleanup(self) -> Dict[str, int]:
        """Delete expired cache rows and history/coverage past retention."""
        retention_days = self.config.backfill.retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        result = {
            'cache_rows': self.cache.cleanup(self.config.cache.cleanup_grace),
            'history_rows': self.history_repo.delete_before(cutoff),
            'coverage_rows': self.tracker.cleanup(retention_days),
        }
        logger.info(f"Cleanup complete: {result}")
        return result

    def health(self) -> Dict[str, Any]:
        circuits = []
        for circuit_id in CIRCUIT_IDS:
            state = self.breaker.get_state(circuit_id)
            circuits.append({
                'id': circuit_id,
                'state': self.breaker.get_state_label(circuit_id),
                'consecutive_failures': state.consecutive_failures,
            })
        degraded = any(c['state'] != 'CLOSED' for c in circuits)
        return {
            'status': 'degraded' if degraded else 'ok',
            'circuits': circuits,
            'cache': self.cache.stats(),
            'upstreams': {
                'price': self.price_client is not None,
                'messages': self.message_client is not None,
                'analytics': self.analytics_client is not None,
            },
        }

    # ------------------------------------------------------------------
    # Event loop bridging for scheduler threads
    # ------------------------------------------------------------------
    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Route ``run_sync`` calls onto ``loop`` (the API server's loop)."""
        self._loop = loop

    def run_sync(self, coro: Coroutine) -> Any:
        """Run a coroutine from a worker thread and wait for its result."""
        if self._loop is not None and self._loop.is_running():
            return asyncio.run_coroutine_threadsafe(coro, self._loop).result()
        return asyncio.run(coro)

    def close(self) -> None:
        for client in self._upstreams:
            client.close()
        if self._store is not None:
            self._store.close()
        logger.info("Ingestion service closed")
