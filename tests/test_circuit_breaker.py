"""Tests for the circuit breaker."""

from __future__ import annotations

import pytest

from proddy.infra import circuit_breaker as cb_module
from proddy.infra.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    composio_breaker,
    convex_breaker,
    llm_breaker,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def monotonic(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(cb_module, "time", fake)
    return fake


def fresh_breaker(threshold: int = 3, cooldown: float = 60.0) -> CircuitBreaker:
    return CircuitBreaker("test", failure_threshold=threshold, cooldown_seconds=cooldown)


# ─────────────────────────────────────────────────────────────────────────────
# State transitions
# ─────────────────────────────────────────────────────────────────────────────

class TestStateTransitions:
    def test_starts_closed(self):
        cb = fresh_breaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.is_open is False
        assert cb.should_allow_request() is True

    def test_opens_after_threshold(self, clock):
        cb = fresh_breaker(threshold=3)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.should_allow_request() is False

    def test_success_resets_count(self, clock):
        cb = fresh_breaker(threshold=2)
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_half_open_single_probe(self, clock):
        cb = fresh_breaker(threshold=1, cooldown=10)
        cb.record_failure()
        clock.now += 11
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.should_allow_request() is True
        assert cb.should_allow_request() is False

    def test_probe_success_closes(self, clock):
        cb = fresh_breaker(threshold=1, cooldown=10)
        cb.record_failure()
        clock.now += 11
        cb.should_allow_request()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_probe_failure_reopens(self, clock):
        cb = fresh_breaker(threshold=1, cooldown=10)
        cb.record_failure()
        clock.now += 11
        cb.should_allow_request()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_reset_and_snapshot(self):
        cb = fresh_breaker(threshold=1)
        cb.record_failure()
        cb.reset()
        assert cb.snapshot() == {"name": "test", "state": "closed", "failures": 0, "threshold": 1}


# ─────────────────────────────────────────────────────────────────────────────
# Context manager
# ─────────────────────────────────────────────────────────────────────────────

class TestContextManager:
    @pytest.mark.asyncio
    async def test_records_outcomes(self):
        cb = fresh_breaker(threshold=1)
        async with cb:
            pass
        assert cb.state == CircuitState.CLOSED

        with pytest.raises(ValueError):
            async with cb:
                raise ValueError("boom")
        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        cb = fresh_breaker(threshold=1)
        cb.record_failure()
        with pytest.raises(CircuitOpenError) as exc_info:
            async with cb:
                pytest.fail("body must not run")
        assert exc_info.value.breaker_name == "test"


class TestSharedBreakers:
    def test_configured(self):
        assert (llm_breaker.name, llm_breaker.failure_threshold) == ("llm", 5)
        assert (composio_breaker.name, composio_breaker.failure_threshold) == ("composio", 5)
        assert (convex_breaker.name, convex_breaker.failure_threshold) == ("convex", 3)
