"""Upstream failure isolation: circuit breaker and retry policy."""
from .circuit_breaker import BreakerState, CircuitBreaker, CircuitState, InMemoryBreakerStore
from .retry import RetryPolicy

__all__ = ['BreakerState', 'CircuitBreaker', 'CircuitState', 'InMemoryBreakerStore', 'RetryPolicy']
