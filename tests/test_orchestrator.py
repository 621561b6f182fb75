"""Tests for ingestion triggers, gap detection and gap backfill."""
import asyncio
import gc
from datetime import date

import pytest

from common.models.data_models import DailyBar
from core.orchestrator.backfill import group_categories
from ingest.coverage.models import IngestionStatus, IngestionType
from ingest.errors import CircuitOpenError, IngestionError, UpstreamServerError

MONDAY = date(2025, 1, 13)
DAY = '2025-01-10'


class TestTriggerIngestion:

    @pytest.mark.asyncio
    async def test_all_categories(self, orchestrator, message_client, analytics_client,
                                  history_repo):
        result = await orchestrator.trigger_ingestion('nvda', DAY, 'all')

        assert result.symbol == 'NVDA'
        assert result.outcome.records == {
            'sentiment_history': 1,
            'narrative_history': 1,
            'emotion_history': 1,
            'price_history': 1,
        }
        assert result.outcome.message_count == 12
        assert result.coverage.flags() == (True, True, True, 12)
        assert result.coverage.ingestion_status == IngestionStatus.COMPLETED
        assert result.coverage.ingestion_type == IngestionType.ALL

        assert len(message_client.calls) == 1
        assert message_client.calls[0]['limit'] == 500
        assert analytics_client.calls == [{'symbol': 'NVDA', 'messages': 12}]

        sentiment = next(iter(history_repo.sentiment.values()))
        assert sentiment['sentiment_score'] == 75
        assert sentiment['bullish_count'] == 8
        assert sentiment['message_volume'] == 12
        narrative = next(iter(history_repo.narratives.values()))
        assert narrative['dominant_narrative'] == 'AI demand'
        assert narrative['period_type'] == 'daily'

    @pytest.mark.asyncio
    async def test_all_forces_refetch(self, orchestrator, message_client, price_client):
        await orchestrator.trigger_ingestion('NVDA', DAY, 'all')
        result = await orchestrator.trigger_ingestion('NVDA', DAY, 'all')

        assert result.outcome.force
        assert result.outcome.skipped == {}
        assert len(message_client.calls) == 2
        assert len(price_client.calls) == 2

    @pytest.mark.asyncio
    async def test_single_type_skips_present_data(self, orchestrator, message_client):
        await orchestrator.trigger_ingestion('NVDA', DAY, 'all')
        result = await orchestrator.trigger_ingestion('NVDA', DAY, 'messages')

        assert result.outcome.skipped == {'messages': 'already_present'}
        assert result.outcome.skipped_reason == 'already_present'
        assert len(message_client.calls) == 1
        assert result.coverage.ingestion_status == IngestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_insufficient_messages(self, orchestrator, message_client, analytics_client):
        from tests.conftest import make_messages

        message_client.messages = make_messages(bullish=3, bearish=1)

        result = await orchestrator.trigger_ingestion('NVDA', DAY, 'all')

        assert result.outcome.skipped == {'messages': 'insufficient_messages',
                                          'analytics': 'insufficient_messages'}
        assert result.outcome.records == {'price_history': 1}
        assert analytics_client.calls == []
        assert result.coverage.flags() == (False, False, True, 0)
        assert result.coverage.ingestion_status == IngestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_price_holiday_skipped(self, orchestrator):
        result = await orchestrator.trigger_ingestion('NVDA', '2025-01-08', 'price')

        assert result.outcome.skipped == {'price': 'no_data'}
        assert not result.coverage.has_price

    @pytest.mark.asyncio
    async def test_price_range_covers_older_dates(self, orchestrator, price_client, history_repo):
        price_client.bars = [
            DailyBar(symbol='NVDA', date='2024-10-31', close=139.3),
            DailyBar(symbol='NVDA', date='2024-11-01', close=135.4),
        ]

        result = await orchestrator.trigger_ingestion('NVDA', '2024-11-01', 'price')

        assert price_client.calls[-1]['range'] == '3mo'
        assert result.outcome.records == {'price_history': 1}
        assert result.coverage.has_price
        assert history_repo.prices[('NVDA', '2024-11-01')].close == 135.4

    @pytest.mark.asyncio
    async def test_recent_price_uses_short_range(self, orchestrator, price_client):
        await orchestrator.trigger_ingestion('NVDA', DAY, 'price')
        assert price_client.calls[-1]['range'] == '1mo'

    @pytest.mark.asyncio
    async def test_unconfigured_analytics_skipped(self, tracker, history_repo, breaker, retry,
                                                  message_client, price_client):
        from core.orchestrator.backfill import BackfillOrchestrator
        from ingest.backfill.jobs import IngestionJobRunner

        runner = IngestionJobRunner(history_repo, breaker, retry, message_client=message_client,
                                    price_client=price_client)
        orchestrator = BackfillOrchestrator(tracker, runner)

        result = await orchestrator.trigger_ingestion('NVDA', DAY, 'analytics')

        assert result.outcome.skipped == {'analytics': 'not_configured'}

    @pytest.mark.asyncio
    async def test_failure_marks_record_failed(self, orchestrator, message_client, tracker):
        message_client.error = UpstreamServerError("stocktwits returned 500", status=500)

        with pytest.raises(IngestionError) as exc:
            await orchestrator.trigger_ingestion('NVDA', DAY, 'messages')

        assert isinstance(exc.value.cause, UpstreamServerError)
        record = tracker.get_record('NVDA', DAY)
        assert record.ingestion_status == IngestionStatus.FAILED
        assert 'returned 500' in record.error_message
        assert record.lease_expires_at is None

        message_client.error = None
        result = await orchestrator.trigger_ingestion('NVDA', DAY, 'messages')
        assert result.coverage.ingestion_status == IngestionStatus.COMPLETED
        assert result.coverage.error_message is None

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, orchestrator, breaker, message_client):
        for _ in range(5):
            breaker.record_failure('stocktwits')

        with pytest.raises(IngestionError) as exc:
            await orchestrator.trigger_ingestion('NVDA', DAY, 'messages')

        assert isinstance(exc.value.cause, CircuitOpenError)
        assert exc.value.cause.retry_after == 30
        assert message_client.calls == []

    @pytest.mark.asyncio
    async def test_same_key_runs_serialized(self, orchestrator):
        results = await asyncio.gather(
            orchestrator.trigger_ingestion('NVDA', DAY, 'all'),
            orchestrator.trigger_ingestion('NVDA', DAY, 'all'),
        )
        assert all(r.coverage.ingestion_status == IngestionStatus.COMPLETED for r in results)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("symbol, day, kind", [
        ('', DAY, 'all'),
        ('NVDA', '2025-13-01', 'all'),
        ('NVDA', DAY, 'everything'),
    ])
    async def test_invalid_arguments(self, orchestrator, symbol, day, kind):
        with pytest.raises(ValueError):
            await orchestrator.trigger_ingestion(symbol, day, kind)


class TestGaps:

    @pytest.mark.asyncio
    async def test_detect_gaps(self, orchestrator):
        await orchestrator.trigger_ingestion('NVDA', DAY, 'all')

        gaps = await orchestrator.detect_gaps('nvda', days=7, today=MONDAY)

        assert [g.date for g in gaps] == ['2025-01-06', '2025-01-07', '2025-01-08', '2025-01-09']
        assert gaps[0].missing == ['messages', 'analytics', 'price']
        assert gaps[0].symbol == 'NVDA'

    @pytest.mark.asyncio
    async def test_partial_gap_lists_missing_only(self, orchestrator):
        await orchestrator.trigger_ingestion('NVDA', '2025-01-09', 'price')

        gaps = await orchestrator.detect_gaps('NVDA', days=4, today=date(2025, 1, 10))

        by_date = {g.date: g.missing for g in gaps}
        assert by_date['2025-01-09'] == ['messages', 'analytics']

    @pytest.mark.asyncio
    async def test_refresh_coverage_explicit_dates(self, orchestrator):
        records = await orchestrator.refresh_coverage('nvda', dates=['2025-01-09', DAY])
        assert [r.date for r in records] == ['2025-01-09', DAY]
        assert all(r.symbol == 'NVDA' for r in records)

    @pytest.mark.asyncio
    async def test_backfill_newest_first(self, orchestrator):
        summary = await orchestrator.backfill_gaps('NVDA', days=7, max_dates=2, today=MONDAY)

        assert summary.dates == ['2025-01-10', '2025-01-09']
        assert summary.processed == 6
        assert summary.failed == 0
        assert summary.remaining == 3

        gaps = await orchestrator.detect_gaps('NVDA', days=7, today=MONDAY)
        assert [g.date for g in gaps] == ['2025-01-06', '2025-01-07', '2025-01-08']

    @pytest.mark.asyncio
    async def test_backfill_counts_failures(self, orchestrator, price_client):
        price_client.error = UpstreamServerError("yahoo-finance returned 503", status=503)

        summary = await orchestrator.backfill_gaps('NVDA', days=7, max_dates=2, today=MONDAY)

        assert summary.failed == 2
        assert summary.processed == 4
        assert {e['type'] for e in summary.errors} == {'price'}

    @pytest.mark.asyncio
    async def test_backfill_fetches_messages_once_per_date(self, orchestrator, message_client,
                                                          analytics_client):
        summary = await orchestrator.backfill_gaps('NVDA', days=7, max_dates=2, today=MONDAY)

        assert summary.processed == 6
        assert sorted(c['day'] for c in message_client.calls) == ['2025-01-09', '2025-01-10']
        assert len(analytics_client.calls) == 2

    @pytest.mark.asyncio
    async def test_backfill_feed_failure_counts_each_category(self, orchestrator,
                                                              message_client):
        message_client.error = UpstreamServerError("stocktwits returned 500", status=500)

        summary = await orchestrator.backfill_gaps('NVDA', days=7, max_dates=1, today=MONDAY)

        assert summary.failed == 2
        assert summary.processed == 1
        assert sorted(e['type'] for e in summary.errors) == ['analytics', 'messages']

    @pytest.mark.asyncio
    async def test_backfill_counts_skips(self, orchestrator, message_client):
        message_client.messages = []

        summary = await orchestrator.backfill_gaps('NVDA', days=7, max_dates=1, today=MONDAY)

        assert summary.dates == ['2025-01-10']
        assert summary.skipped == 2
        assert summary.processed == 1

    @pytest.mark.asyncio
    async def test_backfill_nothing_missing(self, orchestrator):
        summary = await orchestrator.backfill_gaps('NVDA', days=0, today=MONDAY)
        assert summary.to_dict() == {'symbol': 'NVDA', 'processed': 0, 'failed': 0,
                                     'skipped': 0, 'remaining': 0, 'dates': [], 'errors': []}


@pytest.mark.asyncio
async def test_recover_stale_runs(orchestrator, tracker, utc_clock):
    tracker.mark_queued('NVDA', DAY, IngestionType.MESSAGES)
    tracker.mark_running('NVDA', DAY)
    utc_clock.advance(minutes=16)

    assert await orchestrator.recover_stale_runs() == 1

    record = tracker.get_record('NVDA', DAY)
    assert record.ingestion_status == IngestionStatus.COMPLETED
    assert record.has_messages
    assert record.ingestion_type == IngestionType.MESSAGES


@pytest.mark.asyncio
async def test_key_locks_dropped_after_runs(orchestrator):
    await asyncio.gather(
        orchestrator.trigger_ingestion('NVDA', DAY, 'all'),
        orchestrator.trigger_ingestion('NVDA', DAY, 'messages'),
        orchestrator.trigger_ingestion('AAPL', '2025-01-09', 'price'),
    )
    gc.collect()

    assert len(orchestrator._locks) == 0


@pytest.mark.parametrize("missing, expected", [
    (['messages', 'analytics', 'price'],
     [(IngestionType.ALL, ['messages', 'analytics']), (IngestionType.PRICE, ['price'])]),
    (['analytics'], [(IngestionType.ANALYTICS, ['analytics'])]),
    (['messages', 'price'],
     [(IngestionType.MESSAGES, ['messages']), (IngestionType.PRICE, ['price'])]),
    ([], []),
])
def test_group_categories(missing, expected):
    assert group_categories(missing) == expected
