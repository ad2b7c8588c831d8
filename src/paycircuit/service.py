"""Payment service owning the breaker, ledger, metrics and persistence."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from paycircuit.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    LoggingBreakerListener,
)
from paycircuit.errors import PersistenceError
from paycircuit.ledger import DEFAULT_WINDOW, AttemptLedger
from paycircuit.logging import StructuredLogger, log_error, log_info, log_warning
from paycircuit.metrics import MetricsSnapshot, PaymentMetrics
from paycircuit.orchestrator import PaymentRequest, PaymentResult, RetryOrchestrator
from paycircuit.persistence import AbstractStateStore, ServiceState
from paycircuit.provider import PaymentProvider
from paycircuit.retry import BackoffSchedule, build_interruptible_sleep
from paycircuit.settings import PaymentServiceSettings
from paycircuit.summary import summarize

DEFAULT_BREAKER_NAME = "payment-provider"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class BreakerStatus:
    """Caller-facing view of breaker health."""

    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None


class PaymentService:
    """Single owner of all mutable payment-protection state.

    Construct one per protected provider; instances share nothing.
    """

    def __init__(
        self,
        *,
        provider: PaymentProvider,
        breaker_name: str = DEFAULT_BREAKER_NAME,
        breaker_config: CircuitBreakerConfig | None = None,
        schedule: BackoffSchedule | None = None,
        window: timedelta = DEFAULT_WINDOW,
        store: AbstractStateStore | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a service and its collaborators.

        Args:
            provider: Payment dependency to protect.
            breaker_name: Name reported in breaker events and snapshots.
            breaker_config: Threshold and cooldown. Defaults to 5 and 30s.
            schedule: Retry attempt cap and backoff delays.
            window: Rolling window for the attempt ledger and summary.
            store: Optional snapshot store for restart continuity.
            clock: Source of timezone-aware "now".
            sleep: Backoff sleep. Defaults to a sleep that ends early once
                ``close`` is called.
            logger: Structured logger shared by all collaborators.
        """
        self._clock = _utcnow if clock is None else clock
        self._logger: StructuredLogger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )
        self._stop_event = asyncio.Event()
        self._save_lock = asyncio.Lock()
        self._store = store
        self._last_failure_at: datetime | None = None

        self.metrics = PaymentMetrics()
        self.ledger = AttemptLedger(window=window, clock=self._clock)
        self.breaker = CircuitBreaker(
            breaker_name,
            config=breaker_config,
            listeners=[self.metrics, LoggingBreakerListener(self._logger)],
            clock=self._clock,
        )
        self._orchestrator = RetryOrchestrator(
            breaker=self.breaker,
            provider=provider,
            ledger=self.ledger,
            metrics=self.metrics,
            schedule=schedule,
            sleep=build_interruptible_sleep(self._stop_event) if sleep is None else sleep,
            logger=self._logger,
        )

    @classmethod
    def from_settings(
        cls,
        settings: PaymentServiceSettings,
        *,
        provider: PaymentProvider,
        store: AbstractStateStore | None = None,
        logger: StructuredLogger | None = None,
    ) -> PaymentService:
        """Build a service from environment-driven settings."""
        return cls(
            provider=provider,
            breaker_name=settings.breaker_name,
            breaker_config=CircuitBreakerConfig(
                failure_threshold=settings.failure_threshold,
                cooldown=settings.cooldown_seconds,
            ),
            schedule=settings.backoff_schedule(),
            window=settings.history_window(),
            store=store,
            logger=logger,
        )

    async def submit_payment(self, request: PaymentRequest) -> PaymentResult:
        """Run one payment through breaker and retries, then persist state."""
        result = await self._orchestrator.execute(request)
        if not result.success:
            self._last_failure_at = result.completed_at
        await self.save_state()
        return result

    def status(self) -> BreakerStatus:
        snapshot = self.breaker.snapshot()
        return BreakerStatus(
            state=snapshot.state,
            failure_count=snapshot.failure_count,
            last_failure_at=self._last_failure_at,
        )

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    def summary(self) -> str:
        return summarize(
            self.ledger.snapshot(),
            self.breaker.state,
            self._clock(),
            self.ledger.window,
        )

    def export_state(self) -> ServiceState:
        return ServiceState(
            breaker=self.breaker.snapshot(),
            metrics=self.metrics.snapshot(),
            ledger=self.ledger.snapshot(),
            last_failure_at=self._last_failure_at,
        )

    def restore_state(self, state: ServiceState) -> None:
        self.breaker.restore(state.breaker)
        self.metrics.restore(state.metrics)
        self.ledger.restore(state.ledger)
        self._last_failure_at = state.last_failure_at

    def load_state(self) -> bool:
        """Restore from the store. Any failure leaves a fresh state."""
        if self._store is None:
            return False
        try:
            state = self._store.load()
        except PersistenceError as exc:
            log_warning(self._logger, "state.load_failed", error=str(exc))
            return False
        if state is None:
            return False

        self.restore_state(state)
        log_info(
            self._logger,
            "state.loaded",
            circuit_state=str(self.breaker.state),
            total_attempts=state.metrics.total_attempts,
            ledger_records=len(self.ledger),
        )
        return True

    async def save_state(self) -> bool:
        """Persist the current state. Failures are logged, never raised."""
        if self._store is None:
            return False
        async with self._save_lock:
            state = self.export_state()
            try:
                await asyncio.to_thread(self._store.save, state)
            except PersistenceError as exc:
                log_error(self._logger, "state.save_failed", error=str(exc))
                return False
        return True

    async def close(self) -> None:
        """Cut pending backoff sleeps short and write a final snapshot."""
        self._stop_event.set()
        await self.save_state()
