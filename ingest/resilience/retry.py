"""Exponential backoff with jitter for upstream calls.

Example:
    >>> policy = RetryPolicy(max_retries=2, base_delay=1.0)
    >>> payload = await policy.execute(lambda: client.get_quote('AAPL'),
    ...                                circuit_id='yahoo-finance', breaker=breaker)
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from ingest.errors import UpstreamError, is_circuit_trip_error
from ingest.resilience.circuit_breaker import BreakerState, CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryPolicy:
    """
    Bounded retry loop that reports every outcome to a circuit breaker.

    Delay before retry n (0-based) = min(base_delay * 2**n, max_delay) +/- jitter.
    Only rate limits (429) and network failures are retried.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Upper bound for any single delay
        jitter: Fraction of the delay added or removed at random
        sleep: Async sleep, replaced in tests
        rng: Random source for jitter
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_config(cls, config, **kwargs) -> 'RetryPolicy':
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            **kwargs
        )

    def next_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Calculate the wait before retry ``attempt``.

        Args:
            attempt: Zero-based retry number
            retry_after: Provider Retry-After hint, used as a floor

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += self.rng.uniform(-spread, spread)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return max(0.0, min(delay, self.max_delay))

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Check whether retry ``attempt`` (0-based) may run after ``error``."""
        if attempt >= self.max_retries:
            return False
        return isinstance(error, UpstreamError) and error.retryable

    async def execute(self, fn: Callable[[], Awaitable[T]], circuit_id: Optional[str] = None,
                      breaker: Optional[CircuitBreaker] = None) -> T:
        """
        Run ``fn`` until it succeeds, fails permanently, or retries run out.

        The breaker is told about each outcome before the retry decision, so
        a failure that opens the circuit ends the loop. A cancelled call
        gives its half-open probe slot back without counting an outcome.

        Raises:
            The last exception raised by ``fn``
        """
        attempt = 0
        while True:
            try:
                result = await fn()
            except Exception as e:
                if breaker is not None and circuit_id:
                    if is_circuit_trip_error(e):
                        breaker.record_failure(circuit_id)
                    else:
                        breaker.release(circuit_id)

                if not self.should_retry(attempt, e):
                    raise

                if breaker is not None and circuit_id and \
                        breaker.get_state(circuit_id).state != BreakerState.CLOSED:
                    logger.warning("Circuit %s opened during retries, giving up", circuit_id)
                    raise

                delay = self.next_delay(attempt, getattr(e, 'retry_after', None))
                logger.info("Retrying %s in %.2fs (attempt %d/%d): %s",
                            circuit_id or 'call', delay, attempt + 1, self.max_retries, e)
                await self.sleep(delay)
                attempt += 1
                continue
            except BaseException:
                # Cancellation: the outcome is unknown, free a held probe slot
                if breaker is not None and circuit_id:
                    breaker.release(circuit_id)
                raise

            if breaker is not None and circuit_id:
                breaker.record_success(circuit_id)
            return result
