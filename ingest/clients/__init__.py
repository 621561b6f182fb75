"""Upstream API clients."""
from .analytics_client import AnalyticsClient
from .http_client import RateLimiter, UpstreamClient
from .message_client import MessageClient
from .price_client import PriceClient

__all__ = ['AnalyticsClient', 'MessageClient', 'PriceClient', 'RateLimiter', 'UpstreamClient']
