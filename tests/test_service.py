"""Tests for the ingestion service facade."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from common.models.data_models import DailyBar
from core.services.ingestion_service import IngestionService
from ingest.coverage.models import IngestionStatus


@pytest.fixture
def service(breaker, retry, price_client, message_client, analytics_client):
    return IngestionService(
        use_memory=True,
        price_client=price_client,
        message_client=message_client,
        analytics_client=analytics_client,
        breaker=breaker,
        retry=retry,
    )


def test_run_sync_without_loop(service):
    assert service.run_sync(service.recover_stale_runs()) == 0


@pytest.mark.asyncio
async def test_run_sync_from_worker_thread(service):
    service.bind_loop(asyncio.get_running_loop())
    try:
        result = await asyncio.to_thread(service.run_sync, service.detect_gaps('NVDA', days=0))
    finally:
        service.bind_loop(None)
    assert result == []


@pytest.mark.asyncio
async def test_trigger_and_reset(service):
    result = await service.trigger_ingestion('NVDA', '2025-01-10', 'messages')
    assert result.coverage.ingestion_status == IngestionStatus.COMPLETED

    record = await service.reset_status('NVDA', '2025-01-10')
    assert record.ingestion_status is None
    assert record.has_messages


def test_cleanup_removes_old_rows(service):
    old = datetime.now(timezone.utc) - timedelta(days=200)
    service.history_repo.upsert_price_bars(
        [DailyBar(symbol='NVDA', date=old.date().isoformat(), close=10.0)])
    service.history_repo.upsert_price_bars(
        [DailyBar(symbol='NVDA', date=datetime.now(timezone.utc).date().isoformat(), close=11.0)])
    service.tracker.compute_date('NVDA', old.date().isoformat())

    result = service.cleanup()

    assert result == {'cache_rows': 0, 'history_rows': 1, 'coverage_rows': 1}
    assert len(service.history_repo.prices) == 1


def test_unconfigured_upstreams_disabled(monkeypatch, breaker, retry):
    monkeypatch.delenv('STOCKTWITS_BASE_URL', raising=False)
    monkeypatch.delenv('ANALYTICS_API_URL', raising=False)

    service = IngestionService(use_memory=True, breaker=breaker, retry=retry)
    try:
        assert service.message_client is None
        assert service.analytics_client is None
        assert service.health()['upstreams'] == {'price': True, 'messages': False,
                                                 'analytics': False}
    finally:
        service.close()


@pytest.mark.asyncio
async def test_feed_without_message_client(monkeypatch, breaker, retry):
    monkeypatch.delenv('STOCKTWITS_BASE_URL', raising=False)
    service = IngestionService(use_memory=True, breaker=breaker, retry=retry)
    try:
        with pytest.raises(RuntimeError):
            await service.feed('trending')
    finally:
        service.close()
