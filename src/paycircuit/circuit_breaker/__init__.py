"""Thread-safe circuit breaker for a flaky payment dependency.

Key behavior notes:
  - ``can_attempt``/``acquire`` and ``on_result`` are separate steps: the
    caller asks for permission, runs the dependency (including its own
    retries) and reports one final outcome.
  - Half-open probing is conservative: at most one in-flight probe is
    admitted per ``CircuitBreaker`` instance. The ``HALF_OPEN`` state itself
    is the probe token and is flipped under the breaker lock.
  - A probe abandoned without an outcome returns the breaker to ``OPEN``
    with its original ``opened_at``; the next caller may probe again.
  - ``on_result`` while ``OPEN`` is a no-op. While ``HALF_OPEN`` only the
    result reported with ``Permit.PROBE`` moves the breaker.
"""

from paycircuit.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from paycircuit.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from paycircuit.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from paycircuit.circuit_breaker.state import BreakerSnapshot, CircuitState, Permit

__all__ = [
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
    "Permit",
]
