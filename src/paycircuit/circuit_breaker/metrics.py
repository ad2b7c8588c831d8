"""Observability hooks for circuit breakers."""

from datetime import datetime
from typing import Protocol

from paycircuit.circuit_breaker.state import CircuitState
from paycircuit.logging import StructuredLogger, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run synchronously while the breaker holds its lock, so they must
        not call back into the breaker.
    """

    def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState, at: datetime
    ) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""


class LoggingBreakerListener:
    """Listener that writes breaker transitions and rejections to a logger."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger = logger

    def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState, at: datetime
    ) -> None:
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.opened",
                breaker=name,
                previous_state=str(old),
                at=at.isoformat(),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_change",
            breaker=name,
            previous_state=str(old),
            state=str(new),
            at=at.isoformat(),
        )

    def on_call_rejected(self, name: str) -> None:
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)
