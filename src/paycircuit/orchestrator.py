"""Retry-with-backoff orchestration of payment requests through the breaker."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

import structlog
from tenacity import RetryCallState, retry_if_exception_type

from paycircuit.circuit_breaker import CircuitBreaker, CircuitOpenError, Permit
from paycircuit.ledger import BREAKER_REJECTION_ERROR, AttemptLedger
from paycircuit.logging import (
    StructuredLogger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)
from paycircuit.metrics import PaymentMetrics
from paycircuit.provider import PaymentProvider, ProviderError
from paycircuit.retry import BackoffSchedule, build_schedule_retrying

REASON_SERVICE_UNAVAILABLE = "service_unavailable"
REASON_PAYMENT_FAILED = "payment_failed"
REJECTION_MESSAGE = "Payment service temporarily unavailable (circuit breaker open)."


class PaymentOutcome(StrEnum):
    """Caller-visible outcome categories."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PaymentRequest:
    """One payment submitted by a caller."""

    amount: float
    currency: str | None = None
    source: str | None = None

    def as_log_fields(self) -> dict[str, object]:
        return {"amount": self.amount, "currency": self.currency, "source": self.source}


@dataclass(frozen=True)
class PaymentResult:
    """Final result of ``RetryOrchestrator.execute``.

    Attributes:
        outcome: Success, terminal failure or breaker rejection.
        completed_at: Timestamp of the ledger record for this request.
        value: Provider response on success.
        error: Caller-facing error message on failure or rejection.
        reason: Stable category, ``payment_failed`` or ``service_unavailable``.
        attempts: Provider calls made for this request.
        retry_after: Seconds until the breaker may admit a probe, on rejection.
    """

    outcome: PaymentOutcome
    completed_at: datetime
    value: dict[str, object] | None = None
    error: str | None = None
    reason: str | None = None
    attempts: int = 0
    retry_after: float | None = None

    @property
    def success(self) -> bool:
        return self.outcome == PaymentOutcome.SUCCEEDED


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, ProviderError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class RetryOrchestrator:
    """Drive one payment through the breaker with bounded, scheduled retries.

    Side effects per request happen once and in order: breaker outcome, then
    ledger record, then cumulative metrics.
    """

    def __init__(
        self,
        *,
        breaker: CircuitBreaker,
        provider: PaymentProvider,
        ledger: AttemptLedger,
        metrics: PaymentMetrics,
        schedule: BackoffSchedule | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Wire the orchestrator to the collaborators it drives.

        Args:
            breaker: Gate consulted before calling the provider.
            provider: Payment dependency being protected.
            ledger: Windowed record of request outcomes.
            metrics: Cumulative counters.
            schedule: Attempt cap and backoff delays. Defaults to three
                attempts with 0.5s, 1s and 2s delays.
            sleep: Async sleep used between attempts. Defaults to
                ``asyncio.sleep``.
            logger: Structured logger for retry and failure events.
        """
        self._breaker = breaker
        self._provider = provider
        self._ledger = ledger
        self._metrics = metrics
        self._schedule = BackoffSchedule() if schedule is None else schedule
        self._sleep = asyncio.sleep if sleep is None else sleep
        self._logger: StructuredLogger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )

    @property
    def schedule(self) -> BackoffSchedule:
        return self._schedule

    async def execute(self, request: PaymentRequest) -> PaymentResult:
        """Run one payment request to a final outcome."""
        try:
            permit = self._breaker.ensure_permit()
        except CircuitOpenError as exc:
            return self._reject(request, exc)

        try:
            value, attempts, error = await self._charge_with_retry(request)
        except BaseException:
            if permit == Permit.PROBE:
                self._breaker.release_probe()
            raise

        success = error is None
        self._breaker.on_result(success, permit)
        entry = self._ledger.record(success, error)
        self._metrics.record_attempt(success)

        if success:
            log_info(
                self._logger,
                "payment.succeeded",
                attempts=attempts,
                probe=permit == Permit.PROBE,
            )
            return PaymentResult(
                outcome=PaymentOutcome.SUCCEEDED,
                completed_at=entry.timestamp,
                value=value,
                attempts=attempts,
            )

        log_error(
            self._logger,
            "payment.failed",
            request=request.as_log_fields(),
            reason=error,
            attempts=attempts,
        )
        return PaymentResult(
            outcome=PaymentOutcome.FAILED,
            completed_at=entry.timestamp,
            error=error,
            reason=REASON_PAYMENT_FAILED,
            attempts=attempts,
        )

    def _reject(self, request: PaymentRequest, exc: CircuitOpenError) -> PaymentResult:
        entry = self._ledger.record(False, BREAKER_REJECTION_ERROR)
        self._metrics.record_attempt(False)
        log_warning(
            self._logger,
            "payment.rejected",
            request=request.as_log_fields(),
            breaker=exc.breaker_name,
            retry_after=exc.retry_after,
        )
        return PaymentResult(
            outcome=PaymentOutcome.REJECTED,
            completed_at=entry.timestamp,
            error=REJECTION_MESSAGE,
            reason=REASON_SERVICE_UNAVAILABLE,
            retry_after=exc.retry_after,
        )

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self._metrics.record_retry()
        outcome = retry_state.outcome
        exc = None if outcome is None else outcome.exception()
        next_action = retry_state.next_action
        log_warning(
            self._logger,
            "payment.retry_scheduled",
            attempt=retry_state.attempt_number,
            delay_seconds=None if next_action is None else next_action.sleep,
            error=None if exc is None else _error_message(exc),
        )

    async def _charge_with_retry(
        self, request: PaymentRequest
    ) -> tuple[dict[str, object] | None, int, str | None]:
        retrying = build_schedule_retrying(
            retry=retry_if_exception_type(Exception),
            schedule=self._schedule,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    value = await self._provider.charge(request.amount)
                    return value, attempts, None
        except ProviderError as exc:
            return None, attempts, exc.message
        except Exception as exc:
            log_exception(
                self._logger,
                "payment.provider_crashed",
                attempts=attempts,
                error_type=exc.__class__.__name__,
            )
            return None, attempts, _error_message(exc)

        raise RuntimeError("Charge retry loop exited unexpectedly.")
