"""Core circuit breaker implementation."""

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from paycircuit.circuit_breaker.exceptions import CircuitOpenError
from paycircuit.circuit_breaker.metrics import BreakerListener
from paycircuit.circuit_breaker.state import BreakerSnapshot, CircuitState, Permit


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED``
            before opening.
        cooldown: Seconds to stay ``OPEN`` before allowing a probe.
    """

    failure_threshold: int = 5
    cooldown: float = 30.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown < 0:
            raise ValueError("cooldown must be >= 0")


class CircuitBreaker:
    """Three-state gate deciding whether the dependency may be called.

    ``CLOSED`` admits every call. ``OPEN`` rejects calls until the cooldown
    has elapsed, then flips to ``HALF_OPEN`` for exactly one caller: the
    probe. Further callers are rejected until the probe result arrives.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Breaker name used in events and snapshots.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            clock: Source of timezone-aware "now". Defaults to UTC wall clock.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._clock = _utcnow if clock is None else clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: datetime | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def opened_at(self) -> datetime | None:
        return self._opened_at

    def _transition(self, new: CircuitState, at: datetime) -> None:
        old = self._state
        self._state = new
        for listener in self._listeners:
            try:
                listener.on_state_change(self.name, old, new, at)
            except Exception:
                continue

    def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                listener.on_call_rejected(self.name)
            except Exception:
                continue

    def _cooldown_remaining(self, now: datetime) -> float:
        opened_at = now if self._opened_at is None else self._opened_at
        elapsed = (now - opened_at).total_seconds()
        return max(self.config.cooldown - elapsed, 0.0)

    def _acquire_locked(self) -> tuple[Permit, float]:
        if self._state == CircuitState.CLOSED:
            return Permit.ADMITTED, 0.0

        if self._state == CircuitState.OPEN:
            now = self._clock()
            retry_after = self._cooldown_remaining(now)
            if retry_after <= 0:
                self._transition(CircuitState.HALF_OPEN, now)
                return Permit.PROBE, 0.0
            self._emit_call_rejected()
            return Permit.DENIED, retry_after

        # HALF_OPEN: the probe is still in flight.
        self._emit_call_rejected()
        return Permit.DENIED, 0.0

    def acquire(self) -> Permit:
        """Ask for permission to call the dependency.

        Returns:
            ``Permit.PROBE`` when this caller owns the half-open probe,
            ``Permit.ADMITTED`` for normal closed-state calls and
            ``Permit.DENIED`` otherwise.
        """
        with self._lock:
            permit, _ = self._acquire_locked()
            return permit

    def ensure_permit(self) -> Permit:
        """Like ``acquire`` but raise ``CircuitOpenError`` when denied."""
        with self._lock:
            permit, retry_after = self._acquire_locked()
        if permit == Permit.DENIED:
            raise CircuitOpenError(self.name, retry_after=retry_after)
        return permit

    def can_attempt(self) -> bool:
        """Return whether a new call may be issued right now."""
        return self.acquire() != Permit.DENIED

    def on_result(self, success: bool, permit: Permit = Permit.ADMITTED) -> None:
        """Feed the final outcome of an admitted call into the state machine.

        Args:
            success: Whether the call succeeded.
            permit: The permit the call was admitted with. While ``HALF_OPEN``
                only the ``Permit.PROBE`` holder decides recovery; late results
                of calls admitted before the breaker opened are ignored.

        Results arriving while ``OPEN`` are ignored.
        """
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.CLOSED:
                if success:
                    self._failure_count = 0
                    return
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._opened_at = now
                    self._transition(CircuitState.OPEN, now)
                return

            if self._state == CircuitState.HALF_OPEN and permit == Permit.PROBE:
                if success:
                    self._failure_count = 0
                    self._opened_at = None
                    self._transition(CircuitState.CLOSED, now)
                else:
                    self._failure_count = self.config.failure_threshold
                    self._opened_at = now
                    self._transition(CircuitState.OPEN, now)

    def release_probe(self) -> None:
        """Return an abandoned probe slot without recording an outcome.

        The breaker goes back to ``OPEN`` with the original ``opened_at`` so
        that the next caller may probe immediately.
        """
        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                return
            self._transition(CircuitState.OPEN, self._clock())

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent point-in-time view of the breaker."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                opened_at=self._opened_at,
            )

    def restore(self, snapshot: BreakerSnapshot) -> None:
        """Reinstate persisted state without emitting transitions.

        ``HALF_OPEN`` is never restored: an interrupted probe comes back as
        ``OPEN`` so that a fresh probe decides recovery.
        """
        with self._lock:
            threshold = self.config.failure_threshold
            if snapshot.state == CircuitState.CLOSED:
                self._state = CircuitState.CLOSED
                self._failure_count = min(max(snapshot.failure_count, 0), threshold - 1)
                self._opened_at = None
                return

            self._state = CircuitState.OPEN
            self._failure_count = max(snapshot.failure_count, threshold)
            self._opened_at = (
                self._clock() if snapshot.opened_at is None else snapshot.opened_at
            )
