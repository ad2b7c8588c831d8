"""HTTP request/response schemas for the payment API."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from paycircuit.metrics import CircuitTransition, MetricsSnapshot
from paycircuit.orchestrator import PaymentRequest
from paycircuit.service import BreakerStatus


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with milliseconds and ``Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    rendered = value.astimezone(UTC).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def format_rate(value: float) -> str:
    return f"{value:.2f}%"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentRequestBody(BaseModel):
    """Body of ``POST /pay``."""

    amount: float
    currency: str | None = None
    source: str | None = None

    def to_request(self) -> PaymentRequest:
        return PaymentRequest(
            amount=self.amount,
            currency=self.currency,
            source=self.source,
        )


class PaymentSuccessResponse(BaseModel):
    success: bool = True
    result: dict[str, object]


class PaymentErrorResponse(BaseModel):
    success: bool = False
    error: str
    reason: str | None = None


class StatusResponse(_CamelModel):
    circuit_state: str
    failure_count: int
    last_failure: str | None

    @classmethod
    def from_status(cls, status: BreakerStatus) -> StatusResponse:
        return cls(
            circuit_state=status.state.value.lower(),
            failure_count=status.failure_count,
            last_failure=(
                None
                if status.last_failure_at is None
                else format_timestamp(status.last_failure_at)
            ),
        )


class TransitionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_state: str = Field(alias="from")
    to_state: str = Field(alias="to")
    at: str

    @classmethod
    def from_transition(cls, transition: CircuitTransition) -> TransitionResponse:
        return cls(
            from_state=transition.from_state.value,
            to_state=transition.to_state.value,
            at=format_timestamp(transition.at),
        )


class MetricsResponse(_CamelModel):
    retry_count: int
    total_attempts: int
    total_successes: int
    total_failures: int
    success_rate: str
    failure_rate: str
    circuit_transitions: list[TransitionResponse]

    @classmethod
    def from_snapshot(cls, snapshot: MetricsSnapshot) -> MetricsResponse:
        return cls(
            retry_count=snapshot.total_retries,
            total_attempts=snapshot.total_attempts,
            total_successes=snapshot.total_successes,
            total_failures=snapshot.total_failures,
            success_rate=format_rate(snapshot.success_rate),
            failure_rate=format_rate(snapshot.failure_rate),
            circuit_transitions=[
                TransitionResponse.from_transition(item)
                for item in snapshot.circuit_transitions
            ],
        )


class SummaryResponse(BaseModel):
    summary: str
