"""Infrastructure utilities: circuit breakers for outbound services."""

from __future__ import annotations

from proddy.infra.circuit_breaker import CircuitBreaker, CircuitOpenError

__all__ = ["CircuitBreaker", "CircuitOpenError"]
