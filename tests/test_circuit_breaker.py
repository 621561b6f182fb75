"""Tests for the per-upstream circuit breaker."""
import pytest

from ingest.resilience.circuit_breaker import BreakerState, CircuitBreaker

CIRCUIT = 'yahoo-finance'


def trip(breaker, circuit_id=CIRCUIT, times=5):
    for _ in range(times):
        assert breaker.can_make_request(circuit_id)
        breaker.record_failure(circuit_id)


class TestClosedState:
    """Counting failures while closed."""

    def test_new_circuit_is_closed(self, breaker):
        assert breaker.can_make_request(CIRCUIT)
        assert breaker.get_state_label(CIRCUIT) == 'CLOSED'
        assert breaker.get_state(CIRCUIT).consecutive_failures == 0

    def test_opens_at_threshold(self, breaker):
        trip(breaker, times=4)
        assert breaker.get_state(CIRCUIT).state == BreakerState.CLOSED

        breaker.record_failure(CIRCUIT)
        state = breaker.get_state(CIRCUIT)
        assert state.state == BreakerState.OPEN
        assert state.consecutive_failures == 5
        assert not breaker.can_make_request(CIRCUIT)

    def test_success_resets_failure_count(self, breaker):
        trip(breaker, times=4)
        breaker.record_success(CIRCUIT)
        trip(breaker, times=4)
        assert breaker.get_state(CIRCUIT).state == BreakerState.CLOSED

    def test_circuits_are_independent(self, breaker):
        trip(breaker)
        assert not breaker.can_make_request(CIRCUIT)
        assert breaker.can_make_request('stocktwits')

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


class TestOpenState:
    """Cooldown and the single half-open probe."""

    def test_rejects_until_cooldown_elapses(self, breaker, clock):
        trip(breaker)
        clock.advance(29.9)
        assert not breaker.can_make_request(CIRCUIT)
        assert breaker.get_state_label(CIRCUIT) == 'OPEN'

        clock.advance(0.1)
        assert breaker.get_state_label(CIRCUIT) == 'HALF_OPEN'
        assert breaker.can_make_request(CIRCUIT)

    def test_only_one_probe_admitted(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.can_make_request(CIRCUIT)
        assert not breaker.can_make_request(CIRCUIT)
        assert not breaker.can_make_request(CIRCUIT)
        assert breaker.get_state(CIRCUIT).state == BreakerState.HALF_OPEN

    def test_probe_success_closes(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.can_make_request(CIRCUIT)
        breaker.record_success(CIRCUIT)

        state = breaker.get_state(CIRCUIT)
        assert state.state == BreakerState.CLOSED
        assert state.consecutive_failures == 0
        assert breaker.can_make_request(CIRCUIT)

    def test_probe_failure_reopens_with_new_cooldown(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.can_make_request(CIRCUIT)
        breaker.record_failure(CIRCUIT)

        assert breaker.get_state(CIRCUIT).state == BreakerState.OPEN
        clock.advance(29)
        assert not breaker.can_make_request(CIRCUIT)
        clock.advance(1)
        assert breaker.can_make_request(CIRCUIT)

    def test_release_frees_probe_slot(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.can_make_request(CIRCUIT)
        breaker.release(CIRCUIT)

        assert breaker.get_state(CIRCUIT).state == BreakerState.HALF_OPEN
        assert breaker.can_make_request(CIRCUIT)

    def test_late_failure_keeps_trip_time(self, breaker, clock):
        trip(breaker)
        clock.advance(20)
        breaker.record_failure(CIRCUIT)
        clock.advance(10)
        assert breaker.can_make_request(CIRCUIT)

    def test_retry_after_rounds_up(self, breaker, clock):
        trip(breaker)
        assert breaker.retry_after(CIRCUIT) == 30
        clock.advance(12.5)
        assert breaker.retry_after(CIRCUIT) == 18
        clock.advance(17.9)
        assert breaker.retry_after(CIRCUIT) == 1

    def test_retry_after_when_closed(self, breaker):
        assert breaker.retry_after(CIRCUIT) == 1


def test_reset_closes_circuit(breaker):
    trip(breaker)
    breaker.reset(CIRCUIT)
    assert breaker.can_make_request(CIRCUIT)
    assert breaker.get_state(CIRCUIT).consecutive_failures == 0


def test_snapshot_lists_known_circuits(breaker):
    trip(breaker)
    breaker.record_success('stocktwits')
    snapshot = {s['id']: s for s in breaker.snapshot()}
    assert snapshot[CIRCUIT]['state'] == 'OPEN'
    assert snapshot[CIRCUIT]['consecutive_failures'] == 5
    assert snapshot['stocktwits']['state'] == 'CLOSED'
