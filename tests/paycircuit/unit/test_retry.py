from __future__ import annotations

import asyncio

import pytest
from tenacity import AsyncRetrying, RetryCallState, RetryError
from tenacity.retry import retry_if_exception_type

from paycircuit.retry import (
    BackoffSchedule,
    build_interruptible_sleep,
    build_schedule_retrying,
)
from tests.paycircuit.support.fakes import RecordingSleep

pytestmark = pytest.mark.asyncio


@pytest.mark.parametrize(
    ("attempts", "delays", "message"),
    [
        (0, (0.5,), "attempts must be >= 1"),
        (1, (0.5, -0.1), "delays must be >= 0"),
    ],
)
async def test_backoff_schedule_validation(
    attempts: int,
    delays: tuple[float, ...],
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        BackoffSchedule(attempts=attempts, delays=delays)


async def test_backoff_schedule_defaults_match_payment_policy() -> None:
    schedule = BackoffSchedule()

    assert schedule.attempts == 3
    assert schedule.delays == (0.5, 1.0, 2.0)


async def test_delay_for_clamps_to_last_entry() -> None:
    schedule = BackoffSchedule(attempts=6, delays=(0.5, 1.0, 2.0))

    assert [schedule.delay_for(index) for index in range(5)] == [
        0.5,
        1.0,
        2.0,
        2.0,
        2.0,
    ]


async def test_delay_for_empty_schedule_is_zero() -> None:
    assert BackoffSchedule(attempts=3, delays=()).delay_for(1) == 0.0


async def test_from_milliseconds_converts_to_seconds() -> None:
    schedule = BackoffSchedule.from_milliseconds(4, [500, 1000, 2000])

    assert schedule == BackoffSchedule(attempts=4, delays=(0.5, 1.0, 2.0))


async def test_interruptible_sleep_returns_immediately_when_stop_event_is_set() -> None:
    stop_event = asyncio.Event()
    stop_event.set()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(30.0), timeout=0.1)


async def test_interruptible_sleep_waits_for_delay_when_not_interrupted() -> None:
    stop_event = asyncio.Event()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(0.01), timeout=0.2)


async def test_build_retrying_without_optional_hooks() -> None:
    retrying = build_schedule_retrying(
        retry=retry_if_exception_type(ValueError),
        schedule=BackoffSchedule(attempts=2, delays=(0.0,)),
    )

    assert isinstance(retrying, AsyncRetrying)


async def test_build_retrying_sleeps_through_schedule_in_order() -> None:
    sleep = RecordingSleep()
    before_sleep_calls: list[int] = []

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep_calls.append(state.attempt_number)

    retrying = build_schedule_retrying(
        retry=retry_if_exception_type(ValueError),
        schedule=BackoffSchedule(attempts=5, delays=(0.5, 1.0, 2.0)),
        sleep=sleep,
        before_sleep=_before_sleep,
    )

    attempts = 0
    with pytest.raises(ValueError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ValueError("boom")

    assert attempts == 5
    assert sleep.delays == [0.5, 1.0, 2.0, 2.0]
    assert before_sleep_calls == [1, 2, 3, 4]


async def test_build_retrying_stops_on_first_success() -> None:
    sleep = RecordingSleep()
    retrying = build_schedule_retrying(
        retry=retry_if_exception_type(ValueError),
        schedule=BackoffSchedule(attempts=3, delays=(0.5, 1.0, 2.0)),
        sleep=sleep,
    )

    attempts = 0
    async for attempt in retrying:
        with attempt:
            attempts += 1
            if attempts < 2:
                raise ValueError("retry")

    assert attempts == 2
    assert sleep.delays == [0.5]


async def test_build_retrying_does_not_retry_unmatched_exceptions() -> None:
    sleep = RecordingSleep()
    retrying = build_schedule_retrying(
        retry=retry_if_exception_type(ValueError),
        schedule=BackoffSchedule(attempts=3),
        sleep=sleep,
    )

    with pytest.raises(KeyError):
        async for attempt in retrying:
            with attempt:
                raise KeyError("fatal")

    assert sleep.delays == []


async def test_build_retrying_with_reraise_disabled_wraps_last_error() -> None:
    sleep = RecordingSleep()
    retrying = build_schedule_retrying(
        retry=retry_if_exception_type(ValueError),
        schedule=BackoffSchedule(attempts=2, delays=(0.25,)),
        sleep=sleep,
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ValueError("boom")

    assert sleep.delays == [0.25]
