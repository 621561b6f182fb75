"""
Analytics service client
Opaque upstream that turns messages into narratives and emotions.
"""
import logging
from typing import List

from common.models.data_models import AnalyticsResult, FeedMessage
from ingest.errors import MalformedResponseError

from .http_client import UpstreamClient

logger = logging.getLogger(__name__)

# Messages sent per analysis request
MAX_ANALYZED_MESSAGES = 100


class AnalyticsClient:
    """Client for the narrative/emotion analysis service (POST {url})."""

    def __init__(self, client: UpstreamClient):
        self.client = client

    def analyze(self, symbol: str, messages: List[FeedMessage]) -> AnalyticsResult:
        """
        Analyze a batch of messages.

        Args:
            symbol: Ticker symbol
            messages: Messages for one period

        Returns:
            AnalyticsResult with narratives and emotions

        Raises:
            MalformedResponseError: If the payload is not an object
        """
        body = {
            'symbol': symbol.upper(),
            'messages': [m.body for m in messages[:MAX_ANALYZED_MESSAGES] if m.body],
        }
        payload = self.client.post(body=body)
        if not isinstance(payload, dict):
            raise MalformedResponseError("analytics payload is not an object", upstream='analytics')

        result = AnalyticsResult(
            narratives=list(payload.get('narratives') or []),
            emotions=list(payload.get('emotions') or []),
        )
        logger.debug(f"Analytics for {symbol}: {len(result.narratives)} narratives, "
                     f"{len(result.emotions)} emotions")
        return result

    async def fetch_analysis(self, symbol: str, messages: List[FeedMessage]) -> AnalyticsResult:
        return await self.client._call(self.analyze, symbol, messages)
