"""
Ingestion jobs.

One job fetches the data for one (symbol, date) and writes it to the
history tables. Categories: messages (daily sentiment aggregate), analytics
(narratives and emotions) and price (daily close).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from common.config.settings import ANALYTICS_CIRCUIT, FEED_CIRCUIT, PRICE_CIRCUIT
from common.models.data_models import FeedMessage, SentimentAggregate
from ingest.clients.price_client import daily_range_for
from ingest.coverage.models import CoverageRecord, IngestionType
from ingest.errors import CircuitOpenError
from ingest.resilience.circuit_breaker import CircuitBreaker
from ingest.resilience.retry import RetryPolicy

from .calendar import end_of_day, utc_today

logger = logging.getLogger(__name__)

SKIP_PRESENT = 'already_present'
SKIP_INSUFFICIENT = 'insufficient_messages'
SKIP_NOT_CONFIGURED = 'not_configured'
SKIP_NO_DATA = 'no_data'


@dataclass
class IngestionOutcome:
    """Result of one ingestion job."""
    symbol: str
    date: str
    ingestion_type: IngestionType
    force: bool = False
    records: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    message_count: int = 0

    @property
    def skipped_reason(self) -> Optional[str]:
        """Reason when every requested category was skipped."""
        if self.records or not self.skipped:
            return None
        reasons = set(self.skipped.values())
        return reasons.pop() if len(reasons) == 1 else 'mixed'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'date': self.date,
            'type': self.ingestion_type.value,
            'force': self.force,
            'records': dict(self.records),
            'skipped': dict(self.skipped),
            'skipped_reason': self.skipped_reason,
            'message_count': self.message_count,
        }


class IngestionJobRunner:
    """
    Fetches and stores one day of data for a symbol.

    Upstream calls go through the circuit breaker and retry policy; history
    writes run in a worker thread.
    """

    def __init__(self, history_repo, breaker: CircuitBreaker, retry: RetryPolicy,
                 message_client=None, analytics_client=None, price_client=None,
                 min_messages: int = 10, message_limit: int = 500,
                 today: Callable[[], date] = utc_today):
        """
        Initialize job runner.

        Args:
            history_repo: HistoryRepository implementation
            breaker: Shared circuit breaker
            retry: Retry policy for upstream calls
            message_client: MessageClient (messages and analytics need it)
            analytics_client: AnalyticsClient, or None to skip analytics
            price_client: PriceClient, or None to skip price
            min_messages: Fewer messages than this skips the day
            message_limit: Messages fetched per day
            today: Current UTC date, sizes the price history range
        """
        self.history_repo = history_repo
        self.breaker = breaker
        self.retry = retry
        self.message_client = message_client
        self.analytics_client = analytics_client
        self.price_client = price_client
        self.min_messages = min_messages
        self.message_limit = message_limit
        self.today = today

    async def _guarded(self, circuit_id: str, fetcher):
        if not self.breaker.can_make_request(circuit_id):
            raise CircuitOpenError(circuit_id, self.breaker.retry_after(circuit_id))
        return await self.retry.execute(fetcher, circuit_id=circuit_id, breaker=self.breaker)

    async def _fetch_messages(self, symbol: str, day: str) -> List[FeedMessage]:
        return await self._guarded(
            FEED_CIRCUIT,
            lambda: self.message_client.fetch_day_messages(symbol, day, self.message_limit),
        )

    async def run(self, symbol: str, day: str, ingestion_type: IngestionType,
                  force: bool = False,
                  existing: Optional[CoverageRecord] = None,
                  categories: Optional[List[str]] = None) -> IngestionOutcome:
        """
        Run the categories of ``ingestion_type`` (or ``categories``) for one date.

        Without ``force`` a category whose coverage flag is already set is
        skipped. Messages are fetched at most once per run. Errors propagate
        to the caller.
        """
        symbol = symbol.upper()
        outcome = IngestionOutcome(symbol=symbol, date=day, ingestion_type=ingestion_type,
                                   force=force)
        messages: Optional[List[FeedMessage]] = None

        for category in categories or ingestion_type.categories:
            if not force and existing is not None and getattr(existing, f'has_{category}'):
                outcome.skipped[category] = SKIP_PRESENT
                continue

            if category == IngestionType.PRICE.value:
                await self._run_price(outcome)
                continue

            if self.message_client is None:
                outcome.skipped[category] = SKIP_NOT_CONFIGURED
                continue
            if messages is None:
                messages = await self._fetch_messages(symbol, day)
                outcome.message_count = len(messages)

            if len(messages) < self.min_messages:
                logger.info(f"Skipping {category} for {symbol} {day}: "
                            f"{len(messages)} messages < {self.min_messages}")
                outcome.skipped[category] = SKIP_INSUFFICIENT
                continue

            if category == IngestionType.MESSAGES.value:
                await self._store_sentiment(outcome, messages)
            else:
                await self._run_analytics(outcome, messages)

        return outcome

    async def _store_sentiment(self, outcome: IngestionOutcome, messages: List[FeedMessage]):
        aggregate = SentimentAggregate.from_messages(messages)
        row = {
            'symbol': outcome.symbol,
            'recorded_at': end_of_day(outcome.date),
            'sentiment_score': aggregate.sentiment_score,
            'bullish_count': aggregate.bullish_count,
            'bearish_count': aggregate.bearish_count,
            'neutral_count': aggregate.neutral_count,
            'message_volume': aggregate.total,
        }
        await asyncio.to_thread(self.history_repo.upsert_sentiment, row)
        outcome.records['sentiment_history'] = 1
        logger.debug(f"Stored sentiment for {outcome.symbol} {outcome.date}: "
                     f"score={aggregate.sentiment_score} volume={aggregate.total}")

    async def _run_analytics(self, outcome: IngestionOutcome, messages: List[FeedMessage]):
        if self.analytics_client is None:
            outcome.skipped[IngestionType.ANALYTICS.value] = SKIP_NOT_CONFIGURED
            return

        result = await self._guarded(
            ANALYTICS_CIRCUIT,
            lambda: self.analytics_client.fetch_analysis(outcome.symbol, messages),
        )
        recorded_at = end_of_day(outcome.date)

        if result.narratives:
            await asyncio.to_thread(self.history_repo.upsert_narratives, {
                'symbol': outcome.symbol,
                'recorded_at': recorded_at,
                'period_type': 'daily',
                'narratives': result.narratives,
                'dominant_narrative': result.dominant_narrative,
                'message_count': len(messages),
            })
            outcome.records['narrative_history'] = 1

        if result.emotions:
            await asyncio.to_thread(self.history_repo.upsert_emotions, {
                'symbol': outcome.symbol,
                'recorded_at': recorded_at,
                'period_type': 'daily',
                'emotions': result.emotions,
                'dominant_emotion': result.dominant_emotion,
                'message_count': len(messages),
            })
            outcome.records['emotion_history'] = 1

        if not result.narratives and not result.emotions:
            outcome.skipped[IngestionType.ANALYTICS.value] = SKIP_NO_DATA

    async def _run_price(self, outcome: IngestionOutcome):
        if self.price_client is None:
            outcome.skipped[IngestionType.PRICE.value] = SKIP_NOT_CONFIGURED
            return

        range_ = daily_range_for(date.fromisoformat(outcome.date), self.today())
        bars = await self._guarded(
            PRICE_CIRCUIT,
            lambda: self.price_client.fetch_daily_bars(outcome.symbol, range_),
        )
        day_bars = [b for b in bars if b.date == outcome.date]
        if not day_bars:
            # Market holiday or date outside the provider range
            outcome.skipped[IngestionType.PRICE.value] = SKIP_NO_DATA
            return

        written = await asyncio.to_thread(self.history_repo.upsert_price_bars, day_bars)
        outcome.records['price_history'] = written
