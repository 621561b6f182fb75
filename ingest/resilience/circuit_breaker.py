"""Circuit breaker for upstream providers.

One breaker instance guards any number of upstream ids; each id has its own
counters held in a ``BreakerStore``.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast until the recovery timeout elapses
    HALF_OPEN: A single probe request is allowed through

Example:
    >>> breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30.0)
    >>> if breaker.can_make_request('yahoo-finance'):
    ...     try:
    ...         result = fetch()
    ...         breaker.record_success('yahoo-finance')
    ...     except UpstreamServerError:
    ...         breaker.record_failure('yahoo-finance')
    ...         raise
"""
import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    @property
    def label(self) -> str:
        return self.value.upper()


@dataclass
class CircuitState:
    """Per-upstream breaker counters."""

    id: str
    state: BreakerState = BreakerState.CLOSED
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None
    last_success_at: Optional[float] = None
    probe_in_flight: bool = False

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'state': self.state.label,
            'consecutive_failures': self.consecutive_failures,
            'last_failure_at': self.last_failure_at,
            'last_success_at': self.last_success_at,
        }


class BreakerStore(Protocol):
    """Storage for circuit states, one per upstream id."""

    def load(self, circuit_id: str) -> Optional[CircuitState]:
        ...

    def save(self, state: CircuitState) -> None:
        ...

    def all(self) -> List[CircuitState]:
        ...


class InMemoryBreakerStore:
    """Process-local breaker store. State resets when the process restarts."""

    def __init__(self):
        self._states: Dict[str, CircuitState] = {}

    def load(self, circuit_id: str) -> Optional[CircuitState]:
        state = self._states.get(circuit_id)
        return replace(state) if state else None

    def save(self, state: CircuitState) -> None:
        self._states[state.id] = replace(state)

    def all(self) -> List[CircuitState]:
        return [replace(s) for s in self._states.values()]


class CircuitBreaker:
    """
    Failure counting gate in front of upstream calls.

    Never raises for state conditions; callers ask ``can_make_request`` and
    report outcomes with ``record_success`` / ``record_failure``.
    """

    def __init__(self, store: Optional[BreakerStore] = None, failure_threshold: int = 5,
                 recovery_timeout: float = 30.0, clock: Callable[[], float] = time.monotonic):
        """
        Initialize circuit breaker.

        Args:
            store: State store (defaults to a fresh in-memory store)
            failure_threshold: Consecutive distress failures before opening
            recovery_timeout: Seconds to stay open before allowing a probe
            clock: Monotonic time source in seconds
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.store = store if store is not None else InMemoryBreakerStore()
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self._lock = threading.RLock()

    def _state(self, circuit_id: str) -> CircuitState:
        return self.store.load(circuit_id) or CircuitState(id=circuit_id)

    def _cooldown_elapsed(self, state: CircuitState) -> bool:
        if state.last_failure_at is None:
            return True
        return self.clock() - state.last_failure_at >= self.recovery_timeout

    def can_make_request(self, circuit_id: str) -> bool:
        """
        Check whether a request may go upstream.

        An open circuit whose cooldown has elapsed moves to HALF_OPEN and
        grants exactly one probe; further calls are denied until the probe
        reports back.
        """
        with self._lock:
            state = self._state(circuit_id)

            if state.state == BreakerState.CLOSED:
                return True

            if state.state == BreakerState.OPEN:
                if not self._cooldown_elapsed(state):
                    return False
                state.state = BreakerState.HALF_OPEN
                state.probe_in_flight = False
                logger.info("Circuit %s transitioned to HALF_OPEN", circuit_id)

            if state.probe_in_flight:
                self.store.save(state)
                return False

            state.probe_in_flight = True
            self.store.save(state)
            return True

    def record_success(self, circuit_id: str) -> None:
        """Record a successful upstream call."""
        with self._lock:
            state = self._state(circuit_id)
            if state.state != BreakerState.CLOSED:
                logger.info("Circuit %s CLOSED after successful probe", circuit_id)
            state.state = BreakerState.CLOSED
            state.consecutive_failures = 0
            state.probe_in_flight = False
            state.last_success_at = self.clock()
            self.store.save(state)

    def record_failure(self, circuit_id: str) -> None:
        """Record an upstream distress failure (5xx, 429, network, timeout)."""
        with self._lock:
            state = self._state(circuit_id)
            state.consecutive_failures += 1

            if state.state == BreakerState.HALF_OPEN:
                state.state = BreakerState.OPEN
                state.last_failure_at = self.clock()
                logger.warning("Circuit %s re-OPENED after failed probe", circuit_id)
            elif state.state == BreakerState.OPEN:
                # Late failures from calls admitted before the trip keep the
                # cooldown anchored to the trip time.
                pass
            elif state.consecutive_failures >= self.failure_threshold:
                state.state = BreakerState.OPEN
                state.last_failure_at = self.clock()
                logger.warning("Circuit %s OPENED after %d consecutive failures",
                               circuit_id, state.consecutive_failures)
            else:
                state.last_failure_at = self.clock()

            state.probe_in_flight = False
            self.store.save(state)

    def release(self, circuit_id: str) -> None:
        """Give back a probe slot without counting the outcome (non-distress 4xx)."""
        with self._lock:
            state = self._state(circuit_id)
            if state.probe_in_flight:
                state.probe_in_flight = False
                self.store.save(state)

    def get_state(self, circuit_id: str) -> CircuitState:
        """Snapshot of the counters for an upstream."""
        with self._lock:
            return self._state(circuit_id)

    def get_state_label(self, circuit_id: str) -> str:
        """CLOSED, OPEN or HALF_OPEN, for the X-Circuit response header."""
        with self._lock:
            state = self._state(circuit_id)
            if state.state == BreakerState.OPEN and self._cooldown_elapsed(state):
                return BreakerState.HALF_OPEN.label
            return state.state.label

    def retry_after(self, circuit_id: str) -> int:
        """Whole seconds until an open circuit admits a probe (at least 1)."""
        with self._lock:
            state = self._state(circuit_id)
            if state.state != BreakerState.OPEN or state.last_failure_at is None:
                return 1
            remaining = self.recovery_timeout - (self.clock() - state.last_failure_at)
            return max(1, math.ceil(remaining))

    def reset(self, circuit_id: str) -> None:
        """Force an upstream back to CLOSED."""
        with self._lock:
            self.store.save(CircuitState(id=circuit_id, last_success_at=self.clock()))
            logger.info("Circuit %s reset", circuit_id)

    def snapshot(self) -> List[Dict]:
        """All known circuits, for health reporting."""
        with self._lock:
            return [s.to_dict() for s in self.store.all()]
