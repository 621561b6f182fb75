"""
Read-through proxy for upstream data.

Serves fresh cache entries, gates upstream calls with the circuit breaker,
retries transient failures and falls back to stale entries when the
upstream is unavailable.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from common.config.settings import FEED_CIRCUIT, PRICE_CIRCUIT
from ingest.cache.memory import CacheEntry, build_cache_key
from ingest.cache.tiered import TieredCache
from ingest.clients.message_client import FEED_ACTIONS, MessageClient
from ingest.clients.price_client import PriceClient
from ingest.errors import (
    MalformedResponseError,
    UpstreamError,
    UpstreamNetworkError,
    UpstreamRateLimitError,
)
from ingest.resilience.circuit_breaker import CircuitBreaker
from ingest.resilience.retry import RetryPolicy
from ingest.utils.structured_logging import get_logger

logger = get_logger(__name__)

REASON_CIRCUIT_OPEN = 'circuit_open'
REASON_UPSTREAM_ERROR = 'upstream_error'


@dataclass
class ProxyResponse:
    """Status, JSON body and headers for a proxied request."""
    status_code: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)
    source: str = 'api'

    @property
    def degraded(self) -> bool:
        return self.headers.get('X-Degraded') == 'true'


def _degraded_body(payload: Any, reason: str) -> Dict[str, Any]:
    if isinstance(payload, dict):
        return {**payload, '_degraded': True, '_reason': reason}
    return {'data': payload, '_degraded': True, '_reason': reason}


class UpstreamProxy:
    """
    Cache -> breaker -> retry -> upstream read path.

    Never raises for upstream failures; they are turned into a degraded 200
    or an error ProxyResponse. Unexpected exceptions propagate.
    """

    def __init__(self, cache: TieredCache, breaker: CircuitBreaker, retry: RetryPolicy,
                 price_client: Optional[PriceClient] = None,
                 message_client: Optional[MessageClient] = None):
        self.cache = cache
        self.breaker = breaker
        self.retry = retry
        self.price_client = price_client
        self.message_client = message_client

    def _headers(self, circuit_id: str, cache_state: str) -> Dict[str, str]:
        return {
            'X-Cache': cache_state,
            'X-Circuit': self.breaker.get_state_label(circuit_id),
        }

    def _serve_stale(self, circuit_id: str, entry: CacheEntry, reason: str) -> ProxyResponse:
        headers = self._headers(circuit_id, 'STALE')
        headers['X-Degraded'] = 'true'
        logger.warn("serving_stale", circuit=circuit_id, key=entry.key, reason=reason)
        return ProxyResponse(200, _degraded_body(entry.payload, reason), headers, source='stale')

    def _unavailable(self, circuit_id: str, retry_after: int, message: str) -> ProxyResponse:
        headers = self._headers(circuit_id, 'MISS')
        headers['Retry-After'] = str(retry_after)
        body = {'error': message, 'retryAfter': retry_after}
        return ProxyResponse(503, body, headers, source='error')

    def _error_response(self, circuit_id: str, error: UpstreamError) -> ProxyResponse:
        if isinstance(error, UpstreamRateLimitError):
            retry_after = int(error.retry_after or self.breaker.retry_after(circuit_id))
            headers = self._headers(circuit_id, 'MISS')
            headers['Retry-After'] = str(retry_after)
            return ProxyResponse(429, {'error': 'Upstream rate limit exceeded',
                                       'retryAfter': retry_after}, headers, source='error')
        if isinstance(error, UpstreamNetworkError):
            return self._unavailable(circuit_id, self.breaker.retry_after(circuit_id),
                                     'Upstream unreachable')
        if isinstance(error, MalformedResponseError):
            return ProxyResponse(502, {'error': str(error)}, self._headers(circuit_id, 'MISS'),
                                 source='error')
        status = error.status or 502
        return ProxyResponse(status, {'error': str(error), 'status': status},
                             self._headers(circuit_id, 'MISS'), source='error')

    async def fetch(self, circuit_id: str, key: str, category: Optional[str],
                    fetcher: Callable[[], Awaitable[Any]]) -> ProxyResponse:
        """
        Serve ``key`` from cache or upstream.

        Args:
            circuit_id: Breaker id of the upstream
            key: Cache key (see build_cache_key)
            category: Cache policy category
            fetcher: Coroutine factory returning a JSON-serializable payload
        """
        entry = await asyncio.to_thread(self.cache.get, key)
        if entry is not None:
            return ProxyResponse(200, entry.payload, self._headers(circuit_id, 'HIT'),
                                 source='cache')

        if not self.breaker.can_make_request(circuit_id):
            stale = await asyncio.to_thread(self.cache.get_stale, key)
            if stale is not None:
                return self._serve_stale(circuit_id, stale, REASON_CIRCUIT_OPEN)
            retry_after = self.breaker.retry_after(circuit_id)
            logger.warn("circuit_open_no_fallback", circuit=circuit_id, key=key,
                        retry_after=retry_after)
            return self._unavailable(circuit_id, retry_after,
                                     'Service temporarily unavailable')

        try:
            payload = await self.retry.execute(fetcher, circuit_id=circuit_id,
                                               breaker=self.breaker)
        except UpstreamError as e:
            logger.error("upstream_failed", circuit=circuit_id, key=key,
                         error=str(e), status=e.status)
            stale = await asyncio.to_thread(self.cache.get_stale, key)
            if stale is not None:
                return self._serve_stale(circuit_id, stale, REASON_UPSTREAM_ERROR)
            return self._error_response(circuit_id, e)

        await asyncio.to_thread(self.cache.set, key, payload, None, category)
        return ProxyResponse(200, payload, self._headers(circuit_id, 'MISS'), source='api')

    async def quote(self, symbol: str, time_range: Optional[str] = None) -> ProxyResponse:
        """
        Price quote for a symbol and logical time range.

        Raises:
            ValueError: Missing symbol
        """
        if not symbol:
            raise ValueError("symbol is required")
        if self.price_client is None:
            raise RuntimeError("price client not configured")

        symbol = symbol.strip().upper()
        time_range = (time_range or '1D').upper()
        key = build_cache_key('quote', {'symbol': symbol, 'timeRange': time_range})

        async def fetch_quote():
            quote = await self.price_client.fetch_quote(symbol, time_range)
            return quote.to_dict()

        return await self.fetch(PRICE_CIRCUIT, key, 'quote', fetch_quote)

    async def feed(self, action: str, params: Optional[Dict[str, Any]] = None) -> ProxyResponse:
        """
        Message-feed action (messages, symbols, stats, analytics, sentiment, trending).

        Raises:
            ValueError: Unknown action
        """
        if action not in FEED_ACTIONS:
            raise ValueError(f"Invalid action: {action}")
        if self.message_client is None:
            raise RuntimeError("message client not configured")

        params = {k: v for k, v in (params or {}).items() if v is not None and v != ''}
        if 'symbol' in params:
            params['symbol'] = str(params['symbol']).upper()
        key = build_cache_key(action, params)

        async def fetch_feed():
            return await self.message_client.fetch(action, params)

        return await self.fetch(FEED_CIRCUIT, key, action, fetch_feed)
