"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class Permit(StrEnum):
    """Outcome of asking the breaker for permission to call the dependency."""

    DENIED = "denied"
    ADMITTED = "admitted"
    PROBE = "probe"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for status/persistence.

    Attributes:
        name: Breaker name.
        state: Breaker state at snapshot time.
        failure_count: Consecutive failures counted while ``CLOSED``.
        opened_at: Timestamp when the breaker last entered ``OPEN``, if any.
    """

    name: str
    state: CircuitState
    failure_count: int
    opened_at: datetime | None
