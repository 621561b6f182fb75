"""
StockTwits gateway client
Builds per-action requests and fetches day windows of messages.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from common.models.data_models import FeedMessage

from .http_client import UpstreamClient

logger = logging.getLogger(__name__)

QUERY_ENDPOINT = '/functions/v1/stocktwits-query'

# action -> (endpoint, default window in days or None)
FEED_ACTIONS: Dict[str, Tuple[str, Optional[int]]] = {
    'messages': (QUERY_ENDPOINT, 7),
    'symbols': (QUERY_ENDPOINT, None),
    'stats': (QUERY_ENDPOINT, None),
    'analytics': (QUERY_ENDPOINT, 30),
    'sentiment': ('/functions/v1/stocktwits-sentiment', None),
    'trending': ('/functions/v1/stocktwits-trending', None),
}


def build_feed_request(action: str, params: Optional[Dict[str, Any]] = None,
                       today: Optional[date] = None) -> Tuple[str, Dict[str, Any]]:
    """
    Translate a feed action into an endpoint path and query parameters.

    Args:
        action: One of FEED_ACTIONS
        params: Caller parameters (symbol, limit, start, end, type)
        today: Reference date for default windows (UTC today)

    Returns:
        (endpoint, query params)

    Raises:
        ValueError: Unknown action
    """
    if action not in FEED_ACTIONS:
        raise ValueError(f"Invalid action: {action}")

    params = params or {}
    endpoint, window_days = FEED_ACTIONS[action]
    query: Dict[str, Any] = {}

    if endpoint == QUERY_ENDPOINT:
        query['action'] = action
    if action == 'messages':
        query['primaryOnly'] = 'true'
        query['limit'] = str(params.get('limit') or 50)
    if action == 'analytics' and params.get('type'):
        query['type'] = params['type']
    if action != 'symbols' and action != 'trending' and params.get('symbol'):
        query['symbol'] = str(params['symbol']).upper()

    if window_days is not None:
        today = today or datetime.now(timezone.utc).date()
        query['start'] = params.get('start') or (today - timedelta(days=window_days)).isoformat()
        query['end'] = params.get('end') or today.isoformat()

    return endpoint, query


class MessageClient:
    """
    Client for the StockTwits gateway.

    Endpoints:
    - /functions/v1/stocktwits-query (messages, symbols, stats, analytics)
    - /functions/v1/stocktwits-sentiment
    - /functions/v1/stocktwits-trending
    """

    def __init__(self, client: UpstreamClient):
        """
        Initialize message client.

        Args:
            client: UpstreamClient carrying the x-api-key header
        """
        self.client = client

    def query(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Run a feed action and return the raw JSON payload."""
        endpoint, query = build_feed_request(action, params)
        return self.client.get(endpoint, params=query)

    def get_day_messages(self, symbol: str, day: str, limit: int = 500) -> List[FeedMessage]:
        """
        Get messages posted on one UTC day.

        Args:
            symbol: Ticker symbol
            day: Date (YYYY-MM-DD)
            limit: Maximum messages to fetch

        Returns:
            List of FeedMessage
        """
        payload = self.query('messages', {
            'symbol': symbol,
            'limit': limit,
            'start': f"{day}T00:00:00Z",
            'end': f"{day}T23:59:59Z",
        })
        raw = payload.get('messages') if isinstance(payload, dict) else None
        messages = [FeedMessage.from_api(m) for m in raw or []]
        logger.debug(f"Fetched {len(messages)} messages for {symbol} on {day}")
        return messages

    async def fetch(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.client._call(self.query, action, params)

    async def fetch_day_messages(self, symbol: str, day: str, limit: int = 500) -> List[FeedMessage]:
        return await self.client._call(self.get_day_messages, symbol, day, limit)
