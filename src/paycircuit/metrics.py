"""Cumulative payment counters and the breaker transition log."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime

from paycircuit.circuit_breaker import CircuitState


@dataclass(frozen=True)
class CircuitTransition:
    """One observed breaker state change."""

    from_state: CircuitState
    to_state: CircuitState
    at: datetime


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time copy of the cumulative counters.

    Attributes:
        total_attempts: External requests seen, rejections included.
        total_successes: Requests that ended in a successful charge.
        total_failures: Requests that were rejected or exhausted retries.
        total_retries: Backoff-and-retry cycles across all requests.
        circuit_transitions: Breaker state changes, oldest first.
    """

    total_attempts: int
    total_successes: int
    total_failures: int
    total_retries: int
    circuit_transitions: tuple[CircuitTransition, ...]

    @property
    def success_rate(self) -> float:
        """Successful share of attempts as a percentage, 0 when idle."""
        if not self.total_attempts:
            return 0.0
        return self.total_successes / self.total_attempts * 100

    @property
    def failure_rate(self) -> float:
        """Failed share of attempts as a percentage, 0 when idle."""
        if not self.total_attempts:
            return 0.0
        return self.total_failures / self.total_attempts * 100


class PaymentMetrics:
    """Monotonic, never-windowed counters for the payment service.

    Also acts as a ``BreakerListener`` so every breaker transition lands in
    the transition log exactly once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_attempts = 0
        self._total_successes = 0
        self._total_failures = 0
        self._total_retries = 0
        self._transitions: list[CircuitTransition] = []

    def record_retry(self) -> None:
        with self._lock:
            self._total_retries += 1

    def record_attempt(self, success: bool) -> None:
        with self._lock:
            self._total_attempts += 1
            if success:
                self._total_successes += 1
            else:
                self._total_failures += 1

    def record_transition(
        self, from_state: CircuitState, to_state: CircuitState, at: datetime
    ) -> None:
        with self._lock:
            self._transitions.append(
                CircuitTransition(from_state=from_state, to_state=to_state, at=at)
            )

    def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState, at: datetime
    ) -> None:
        _ = name
        self.record_transition(old, new, at)

    def on_call_rejected(self, name: str) -> None:
        _ = name

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_attempts=self._total_attempts,
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                total_retries=self._total_retries,
                circuit_transitions=tuple(self._transitions),
            )

    def restore(self, snapshot: MetricsSnapshot) -> None:
        """Load persisted counters, keeping ``attempts == successes + failures``."""
        with self._lock:
            self._total_successes = max(snapshot.total_successes, 0)
            self._total_failures = max(snapshot.total_failures, 0)
            self._total_attempts = self._total_successes + self._total_failures
            self._total_retries = max(snapshot.total_retries, 0)
            self._transitions = list(snapshot.circuit_transitions)
