from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.retry import retry_base
from tenacity.wait import wait_base

DEFAULT_BACKOFF_SCHEDULE: tuple[float, ...] = (0.5, 1.0, 2.0)


@dataclass(frozen=True)
class BackoffSchedule:
    """Attempt cap plus a literal, ordered list of inter-attempt delays.

    Delays are consumed by retry index. When there are more retries than
    delays, the last delay is reused.
    """

    attempts: int = 3
    delays: tuple[float, ...] = DEFAULT_BACKOFF_SCHEDULE

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if any(delay < 0 for delay in self.delays):
            raise ValueError("delays must be >= 0")

    @classmethod
    def from_milliseconds(
        cls, attempts: int, delays_ms: Sequence[float]
    ) -> BackoffSchedule:
        """Build a schedule from millisecond delays."""
        return cls(
            attempts=attempts,
            delays=tuple(delay / 1000.0 for delay in delays_ms),
        )

    def delay_for(self, retry_index: int) -> float:
        """Return the delay before retry ``retry_index`` (0-based)."""
        if not self.delays:
            return 0.0
        return self.delays[min(max(retry_index, 0), len(self.delays) - 1)]


class wait_schedule(wait_base):
    """Wait strategy that reads delays from a ``BackoffSchedule``."""

    def __init__(self, schedule: BackoffSchedule) -> None:
        self.schedule = schedule

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.schedule.delay_for(retry_state.attempt_number - 1)


def build_interruptible_sleep(
    stop_event: asyncio.Event,
) -> Callable[[float], Awaitable[None]]:
    """Build an async sleep that exits early when shutdown is requested."""

    async def _interruptible_sleep(delay: float) -> None:
        if stop_event.is_set():
            return

        bounded_delay = max(delay, 0.0)
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=bounded_delay)

    return _interruptible_sleep


def build_schedule_retrying(
    *,
    retry: retry_base,
    schedule: BackoffSchedule,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that follows a fixed backoff schedule."""
    options: dict[str, object] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(
        retry=retry,
        wait=wait_schedule(schedule),
        stop=stop_after_attempt(schedule.attempts),
        reraise=reraise,
        **options,
    )
