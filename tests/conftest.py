"""Test fixtures for sentiment ingestion tests."""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from common.models.data_models import AnalyticsResult, DailyBar, FeedMessage, PricePoint, PriceQuote
from core.orchestrator.backfill import BackfillOrchestrator
from ingest.backfill.jobs import IngestionJobRunner
from ingest.coverage.tracker import CoverageTracker
from ingest.resilience.circuit_breaker import CircuitBreaker
from ingest.resilience.retry import RetryPolicy
from storage.memory import (
    InMemoryCoverageRepository,
    InMemoryHistoryRepository,
    InMemoryResponseCacheRepository,
)


# Mock classes (importable for direct instantiation in tests)
class FakeClock:
    """Manually advanced clock returning epoch-like seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUTCClock:
    """Manually advanced clock returning timezone-aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 13, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_messages(bullish: int = 0, bearish: int = 0, neutral: int = 0) -> List[FeedMessage]:
    messages = []
    for label, count in (('Bullish', bullish), ('Bearish', bearish), (None, neutral)):
        for _ in range(count):
            raw = {'id': len(messages) + 1, 'body': f'message {len(messages) + 1}',
                   'created_at': '2025-01-10T15:00:00Z'}
            if label:
                raw['entities'] = {}
                raw['sentiment'] = {'basic': label}
            messages.append(FeedMessage.from_api(raw))
    return messages


class MockMessageClient:
    """Mock message feed client."""

    def __init__(self, messages: Optional[List[FeedMessage]] = None, error: Optional[Exception] = None):
        self.messages = messages if messages is not None else make_messages(bullish=8, bearish=2, neutral=2)
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.feed_payload: Any = {'messages': []}

    async def fetch_day_messages(self, symbol: str, day: str, limit: int = 500) -> List[FeedMessage]:
        self.calls.append({'method': 'fetch_day_messages', 'symbol': symbol, 'day': day, 'limit': limit})
        if self.error:
            raise self.error
        return list(self.messages)

    async def fetch(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append({'method': 'fetch', 'action': action, 'params': params})
        if self.error:
            raise self.error
        return self.feed_payload


class MockAnalyticsClient:
    """Mock analytics service client."""

    def __init__(self, result: Optional[AnalyticsResult] = None):
        self.result = result or AnalyticsResult(
            narratives=[{'name': 'AI demand', 'count': 7}, {'name': 'Export rules', 'count': 3}],
            emotions=[{'name': 'Excitement', 'score': 72}, {'name': 'Fear', 'score': 20}],
        )
        self.calls: List[Dict[str, Any]] = []

    async def fetch_analysis(self, symbol: str, messages: List[FeedMessage]) -> AnalyticsResult:
        self.calls.append({'symbol': symbol, 'messages': len(messages)})
        return self.result


class MockPriceClient:
    """Mock price client returning a fixed quote and daily bars."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.bars: Optional[List[DailyBar]] = None

    async def fetch_quote(self, symbol: str, time_range: Optional[str] = None) -> PriceQuote:
        self.calls.append({'method': 'fetch_quote', 'symbol': symbol, 'time_range': time_range})
        if self.error:
            raise self.error
        return PriceQuote(
            symbol=symbol,
            prices=[PricePoint('2025-01-10T15:00:00Z', 190.1, 189.5, 190.4, 189.2, 1200)],
            current_price=190.1,
            previous_close=188.0,
            change=2.1,
            change_percent=1.12,
            market_state='REGULAR',
        )

    async def fetch_daily_bars(self, symbol: str, range_: str = '1mo') -> List[DailyBar]:
        self.calls.append({'method': 'fetch_daily_bars', 'symbol': symbol, 'range': range_})
        if self.error:
            raise self.error
        if self.bars is not None:
            return list(self.bars)
        return [
            DailyBar(symbol=symbol, date='2025-01-09', close=140.1),
            DailyBar(symbol=symbol, date='2025-01-10', close=142.5, open=141.0, high=143.0,
                     low=140.2, volume=1000),
        ]


# Fixtures
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUTCClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=5, recovery_timeout=30.0, clock=clock)


@pytest.fixture
def retry(recording_sleep):
    return RetryPolicy(max_retries=2, base_delay=1.0, max_delay=30.0, jitter=0.0,
                       sleep=recording_sleep)


@pytest.fixture
def coverage_repo():
    return InMemoryCoverageRepository()


@pytest.fixture
def history_repo():
    return InMemoryHistoryRepository()


@pytest.fixture
def cache_repo():
    return InMemoryResponseCacheRepository()


@pytest.fixture
def tracker(coverage_repo, history_repo, utc_clock):
    return CoverageTracker(coverage_repo, history_repo, lease_seconds=900, clock=utc_clock)


@pytest.fixture
def message_client():
    return MockMessageClient()


@pytest.fixture
def analytics_client():
    return MockAnalyticsClient()


@pytest.fixture
def price_client():
    return MockPriceClient()


@pytest.fixture
def runner(history_repo, breaker, retry, message_client, analytics_client, price_client):
    return IngestionJobRunner(
        history_repo,
        breaker,
        retry,
        message_client=message_client,
        analytics_client=analytics_client,
        price_client=price_client,
        min_messages=10,
        message_limit=500,
        today=lambda: date(2025, 1, 13),
    )


@pytest.fixture
def orchestrator(tracker, runner):
    return BackfillOrchestrator(tracker, runner, max_concurrency=3, default_days=30,
                                max_dates_per_run=10)
