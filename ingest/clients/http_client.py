"""
Upstream HTTP client
Base client with rate limiting, connection pooling and error classification.
"""
import asyncio
import logging
import threading
import time
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ingest.errors import (
    MalformedResponseError,
    UpstreamHTTPError,
    UpstreamNetworkError,
    UpstreamNotFoundError,
    UpstreamRateLimitError,
    UpstreamServerError,
)

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Thread-safe rate limiter using token bucket algorithm.
    """
    def __init__(self, requests_per_second: int = 10):
        self.rate = requests_per_second
        self.tokens = requests_per_second
        self.max_tokens = requests_per_second
        self.last_update = time.monotonic()
        self.lock = threading.Lock()

    def acquire(self):
        """Acquire a token (blocks if necessary)"""
        with self.lock:
            while True:
                now = time.monotonic()
                self.tokens = min(self.max_tokens, self.tokens + (now - self.last_update) * self.rate)
                self.last_update = now
                if self.tokens >= 1:
                    break
                time.sleep(0.05)

            self.tokens -= 1


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class UpstreamClient:
    """
    Base client for a third-party JSON API.

    Features:
    - HTTP connection pooling
    - Rate limiting
    - Typed errors for every failure class (see ingest.errors)
    - Async wrappers that run blocking calls in a worker thread

    urllib3 retries are disabled; ``RetryPolicy`` owns retries so that each
    attempt is visible to the circuit breaker.
    """

    name = 'upstream'

    def __init__(self, base_url: str, rate_limit: int = 10, timeout: float = 15.0,
                 max_connections: int = 50, headers: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize upstream client.

        Args:
            base_url: Root URL of the provider API
            rate_limit: Requests per second
            timeout: Per-request timeout in seconds
            max_connections: Maximum HTTP connections in pool
            headers: Default headers sent with every request
            session: Pre-built session (tests)
        """
        if not base_url:
            raise ValueError(f"{self.name}: base_url is required")
        self.base_url = base_url.rstrip('/')
        self.rate_limiter = RateLimiter(rate_limit)
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=max_connections,
                pool_maxsize=max_connections,
                max_retries=Retry(total=0, raise_on_status=False),
            )
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session
        if headers:
            self.session.headers.update(headers)

        logger.info(f"{self.name} client initialized: {self.base_url}, {rate_limit} req/s")

    def _request(self, method: str, path: str = '', params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make a rate-limited HTTP request and decode the JSON body.

        Raises:
            UpstreamNetworkError: Connection failure or timeout
            UpstreamRateLimitError: HTTP 429
            UpstreamServerError: HTTP 5xx
            UpstreamNotFoundError: HTTP 404
            UpstreamHTTPError: Any other non-2xx status
            MalformedResponseError: Body is not JSON
        """
        self.rate_limiter.acquire()
        url = f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

        try:
            response = self.session.request(method, url, params=params, json=json_body,
                                            timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning(f"{self.name} network error for {url}: {e}")
            raise UpstreamNetworkError(str(e), upstream=self.name) from e

        status = response.status_code
        if status == 429:
            retry_after = parse_retry_after(response.headers.get('Retry-After'))
            logger.warning(f"{self.name} rate limited (retry_after={retry_after})")
            raise UpstreamRateLimitError(f"{self.name} rate limited", retry_after=retry_after,
                                         upstream=self.name)
        if status >= 500:
            logger.error(f"{self.name} server error {status} for {url}")
            raise UpstreamServerError(f"{self.name} returned {status}", status=status,
                                      upstream=self.name)
        if status == 404:
            raise UpstreamNotFoundError(f"{self.name}: not found", upstream=self.name)
        if status >= 400:
            raise UpstreamHTTPError(f"{self.name} returned {status}", status=status,
                                    upstream=self.name)

        try:
            return response.json()
        except ValueError as e:
            content_type = response.headers.get('Content-Type', '')
            logger.error(f"{self.name} returned non-JSON body ({content_type})")
            raise MalformedResponseError(f"{self.name} returned non-JSON response",
                                         status=status, upstream=self.name) from e

    def get(self, path: str = '', params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('GET', path, params=params)

    def post(self, path: str = '', body: Optional[Dict[str, Any]] = None) -> Any:
        return self._request('POST', path, json_body=body)

    async def _call(self, fn, *args, **kwargs):
        """Run a blocking call in a worker thread, bounded by the client timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs),
                                          timeout=self.timeout + 5)
        except asyncio.TimeoutError as e:
            raise UpstreamNetworkError(f"{self.name} call timed out", upstream=self.name) from e

    def close(self):
        """Close the HTTP session"""
        self.session.close()
        logger.info(f"Closed {self.name} client session")
