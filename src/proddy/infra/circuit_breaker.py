"""Circuit breaker for calls to the tool provider, the LLM and the document store.

States:
    CLOSED     calls pass through.
    OPEN       calls fail fast with CircuitOpenError.
    HALF_OPEN  a single probe call is let through to test recovery.

CLOSED → OPEN after ``failure_threshold`` consecutive failures. OPEN →
HALF_OPEN once ``cooldown_seconds`` have passed since the last failure.
A successful probe closes the circuit; a failed one reopens it.
"""

from __future__ import annotations

import time
from enum import Enum
from types import TracebackType
from typing import Any, Self

import structlog

logger = structlog.get_logger()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, breaker_name: str) -> None:
        super().__init__(f"{breaker_name} is temporarily unavailable (circuit open)")
        self.breaker_name = breaker_name


class CircuitBreaker:
    """Consecutive-failure breaker, usable as ``async with breaker:``."""

    __slots__ = (
        "name",
        "failure_threshold",
        "cooldown_seconds",
        "_failures",
        "_opened_at",
        "_probing",
    )

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._failures = 0
        self._opened_at = 0.0
        self._probing = False

    @property
    def state(self) -> CircuitState:
        if self._failures < self.failure_threshold:
            return CircuitState.CLOSED
        if time.monotonic() - self._opened_at < self.cooldown_seconds:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def record_success(self) -> None:
        self._probing = False
        if self._failures:
            logger.info("circuit_breaker_closed", breaker=self.name, previous_failures=self._failures)
        self._failures = 0

    def record_failure(self) -> None:
        self._probing = False
        self._failures += 1
        self._opened_at = time.monotonic()
        if self._failures == self.failure_threshold:
            logger.warning(
                "circuit_breaker_opened",
                breaker=self.name,
                failures=self._failures,
                cooldown_s=self.cooldown_seconds,
            )

    def should_allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._probing:
            self._probing = True
            logger.info("circuit_breaker_half_open_probe", breaker=self.name)
            return True
        return False

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = 0.0
        self._probing = False

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self._failures,
            "threshold": self.failure_threshold,
        }

    async def __aenter__(self) -> Self:
        if not self.should_allow_request():
            raise CircuitOpenError(self.name)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.record_success()
        else:
            self.record_failure()


# name: (failure_threshold, cooldown_seconds)
_BREAKER_CONFIGS: dict[str, tuple[int, float]] = {
    "llm": (5, 60.0),
    "composio": (5, 60.0),
    "convex": (3, 30.0),
}

llm_breaker = CircuitBreaker("llm", *_BREAKER_CONFIGS["llm"])
composio_breaker = CircuitBreaker("composio", *_BREAKER_CONFIGS["composio"])
convex_breaker = CircuitBreaker("convex", *_BREAKER_CONFIGS["convex"])
