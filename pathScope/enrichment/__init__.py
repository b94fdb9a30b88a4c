"""
Enrichment for pathScope: provider tables, connection facts, topology
inference and scoring.

Also provides CircuitBreaker, used to stop hammering rate-limited lookup
services (ipapi.co allows roughly a thousand anonymous calls a day) once they
start failing.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pathScope.logging_config import get_logger

logger = get_logger("enrichment")


class CircuitState(Enum):
    CLOSED = "closed"        # calls pass through
    OPEN = "open"            # calls are skipped
    HALF_OPEN = "half_open"  # one trial call allowed


@dataclass
class CircuitBreaker:
    """
    Skip calls to a failing external service for a while.

    After `failure_threshold` consecutive failures the circuit opens and
    `allow()` returns False until `recovery_time` seconds have passed; then a
    single trial call is allowed. Its success closes the circuit, its failure
    reopens it.

    Usage:
        if breaker.allow():
            try:
                result = await lookup()
                breaker.record_success()
            except ProbeError:
                breaker.record_failure()
    """
    name: str
    failure_threshold: int = 3
    recovery_time: float = 300.0
    clock: Callable[[], float] = time.monotonic

    _failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    def allow(self) -> bool:
        if self._state == CircuitState.OPEN and self.clock() - self._opened_at >= self.recovery_time:
            self._state = CircuitState.HALF_OPEN
            logger.info(
                f"Circuit breaker '{self.name}' entering half-open state",
                extra={"state": "half_open", "provider": self.name},
            )
        return self._state != CircuitState.OPEN

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(
                f"Circuit breaker '{self.name}' closed after successful recovery",
                extra={"state": "closed", "provider": self.name, "outcome": "recovered"},
            )
        self._state = CircuitState.CLOSED
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker '{self.name}' opened after {self._failures} failures",
                    extra={"state": "open", "provider": self.name, "failures": self._failures, "outcome": "tripped"},
                )
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "failures": self._failures,
            "failure_threshold": self.failure_threshold,
            "recovery_time": self.recovery_time,
        }
