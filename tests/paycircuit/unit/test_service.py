from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from paycircuit.circuit_breaker import CircuitBreakerConfig, CircuitState
from paycircuit.errors import PersistenceError
from paycircuit.orchestrator import PaymentOutcome, PaymentRequest
from paycircuit.persistence import (
    AbstractStateStore,
    InMemoryStateStore,
    JsonFileStateStore,
    ServiceState,
)
from paycircuit.retry import BackoffSchedule
from paycircuit.service import PaymentService
from paycircuit.settings import PaymentServiceSettings
from tests.paycircuit.support.fakes import (
    FakeClock,
    FakeLogger,
    RecordingSleep,
    ScriptedProvider,
)

pytestmark = pytest.mark.asyncio

_REQUEST = PaymentRequest(amount=10.0, currency="EUR", source="tok_visa")


class _BrokenStore(AbstractStateStore):
    def load(self) -> ServiceState | None:
        raise PersistenceError("corrupt")

    def save(self, state: ServiceState) -> None:
        raise PersistenceError("disk full")


def _service(
    provider: ScriptedProvider,
    *,
    clock: FakeClock,
    logger: FakeLogger,
    sleep: RecordingSleep | None = None,
    store: AbstractStateStore | None = None,
    failure_threshold: int = 2,
) -> PaymentService:
    return PaymentService(
        provider=provider,
        breaker_config=CircuitBreakerConfig(failure_threshold=failure_threshold, cooldown=30.0),
        schedule=BackoffSchedule(attempts=2, delays=(0.5,)),
        store=store,
        clock=clock.now,
        sleep=RecordingSleep() if sleep is None else sleep,
        logger=logger,
    )


async def test_status_reflects_breaker_and_last_failure(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(ScriptedProvider([False]), clock=fake_clock, logger=fake_logger)

    status = service.status()
    assert status.state == CircuitState.CLOSED
    assert status.last_failure_at is None

    await service.submit_payment(_REQUEST)
    fake_clock.advance(3)
    await service.submit_payment(_REQUEST)

    status = service.status()
    assert status.state == CircuitState.OPEN
    assert status.failure_count == 2
    assert status.last_failure_at == fake_clock.now()


async def test_rejection_updates_last_failure(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(
        ScriptedProvider([False]),
        clock=fake_clock,
        logger=fake_logger,
        failure_threshold=1,
    )
    await service.submit_payment(_REQUEST)
    fake_clock.advance(5)

    result = await service.submit_payment(_REQUEST)

    assert result.outcome == PaymentOutcome.REJECTED
    assert service.status().last_failure_at == fake_clock.now()


async def test_summary_and_metrics_agree_with_recorded_attempts(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(
        ScriptedProvider([True, False, False, True]),
        clock=fake_clock,
        logger=fake_logger,
        failure_threshold=5,
    )

    await service.submit_payment(_REQUEST)
    await service.submit_payment(_REQUEST)
    await service.submit_payment(_REQUEST)

    metrics = service.metrics_snapshot()
    assert metrics.total_attempts == 3
    assert metrics.total_successes == 2
    assert metrics.total_failures == 1
    assert metrics.total_retries == 1
    assert service.summary() == (
        "In the last 10 minutes, 33% of payment attempts failed due to provider "
        "instability. The circuit breaker is closed and operating normally."
    )


async def test_independent_services_share_no_state(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    failing = _service(
        ScriptedProvider([False]), clock=fake_clock, logger=fake_logger, failure_threshold=1
    )
    healthy = _service(ScriptedProvider([True]), clock=fake_clock, logger=fake_logger)

    await failing.submit_payment(_REQUEST)
    await healthy.submit_payment(_REQUEST)

    assert failing.status().state == CircuitState.OPEN
    assert healthy.status().state == CircuitState.CLOSED
    assert healthy.metrics_snapshot().total_failures == 0


async def test_state_survives_restart_through_store(
    fake_clock: FakeClock, fake_logger: FakeLogger, tmp_path: Path
) -> None:
    store = JsonFileStateStore(tmp_path / "state.json")
    first = _service(
        ScriptedProvider([False]),
        clock=fake_clock,
        logger=fake_logger,
        store=store,
        failure_threshold=1,
    )
    await first.submit_payment(_REQUEST)
    await first.close()

    second = _service(ScriptedProvider([True]), clock=fake_clock, logger=fake_logger, store=store)
    assert second.load_state() is True

    assert second.status().state == CircuitState.OPEN
    assert second.status().last_failure_at == first.status().last_failure_at
    assert second.metrics_snapshot() == first.metrics_snapshot()
    assert second.ledger.snapshot() == first.ledger.snapshot()
    assert "state.loaded" in fake_logger.events


async def test_load_without_saved_state_starts_fresh(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(
        ScriptedProvider([True]),
        clock=fake_clock,
        logger=fake_logger,
        store=InMemoryStateStore(),
    )

    assert service.load_state() is False
    assert service.status().state == CircuitState.CLOSED


async def test_service_without_store_skips_persistence(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(ScriptedProvider([True]), clock=fake_clock, logger=fake_logger)

    assert service.load_state() is False
    assert await service.save_state() is False


async def test_persistence_failures_are_logged_not_raised(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = _service(
        ScriptedProvider([True]),
        clock=fake_clock,
        logger=fake_logger,
        store=_BrokenStore(),
    )

    assert service.load_state() is False
    result = await service.submit_payment(_REQUEST)

    assert result.success is True
    assert fake_logger.calls_for("state.load_failed") == [{"error": "corrupt"}]
    assert fake_logger.calls_for("state.save_failed") == [{"error": "disk full"}]


async def test_close_interrupts_pending_backoff(
    fake_clock: FakeClock, fake_logger: FakeLogger
) -> None:
    service = PaymentService(
        provider=ScriptedProvider([False, True]),
        schedule=BackoffSchedule(attempts=2, delays=(30.0,)),
        clock=fake_clock.now,
        logger=fake_logger,
    )

    task = asyncio.create_task(service.submit_payment(_REQUEST))
    await asyncio.sleep(0.01)
    await service.close()
    result = await asyncio.wait_for(task, timeout=1.0)

    assert result.success is True
    assert result.attempts == 2


async def test_from_settings_applies_configuration(fake_logger: FakeLogger) -> None:
    settings = PaymentServiceSettings(
        failure_threshold=3,
        cooldown_seconds=12.0,
        max_retries=4,
        backoff_schedule_ms=(100,),
        history_window_seconds=120,
        breaker_name="acquirer",
    )

    service = PaymentService.from_settings(
        settings, provider=ScriptedProvider([True]), logger=fake_logger
    )

    assert service.breaker.name == "acquirer"
    assert service.breaker.config.failure_threshold == 3
    assert service.breaker.config.cooldown == 12.0
    assert service.ledger.window.total_seconds() == 120
    assert service._orchestrator.schedule == BackoffSchedule(attempts=4, delays=(0.1,))


@pytest.mark.parametrize(
    "content",
    [
        b"\xff\xfe{bad",
        (
            b'{"version": 1, "breaker": {"name": "payment-provider", "state": "OPEN",'
            b' "failure_count": 5, "opened_at": "2020-01-01T00:00:00"},'
            b' "metrics": {"total_attempts": 1, "total_successes": 0,'
            b' "total_failures": 1, "total_retries": 0},'
            b' "ledger": [{"success": false, "error": "boom",'
            b' "timestamp": "2020-01-01T00:00:00"}]}'
        ),
    ],
)
async def test_unreadable_state_file_starts_fresh_and_keeps_serving(
    fake_clock: FakeClock, fake_logger: FakeLogger, tmp_path: Path, content: bytes
) -> None:
    path = tmp_path / "state.json"
    path.write_bytes(content)
    service = _service(
        ScriptedProvider([True]),
        clock=fake_clock,
        logger=fake_logger,
        store=JsonFileStateStore(path),
    )

    assert service.load_state() is False
    assert service.status().state == CircuitState.CLOSED
    assert service.metrics_snapshot().total_attempts == 0
    assert len(service.ledger) == 0
    assert "state.load_failed" in fake_logger.events

    result = await service.submit_payment(_REQUEST)

    assert result.success is True
