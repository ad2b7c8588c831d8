from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from paycircuit.provider import ProviderError


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.events.append(event)
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def exception(self, event: str, **kwargs: object) -> None:
        self._record("exception", event, **kwargs)

    def calls_for(self, event: str) -> list[dict[str, object]]:
        return [fields for _, name, fields in self.calls if name == event]


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2020, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep double that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedProvider:
    """Payment provider that replays a fixed script of outcomes.

    ``True`` succeeds, ``False`` raises ``ProviderError``. Once the script is
    exhausted the last outcome repeats.
    """

    def __init__(
        self,
        outcomes: Iterable[bool] = (True,),
        *,
        message: str = "Payment failed due to provider error.",
    ) -> None:
        self._outcomes = list(outcomes)
        self._message = message
        self.calls: list[float] = []

    async def charge(self, amount: float) -> dict[str, object]:
        index = min(len(self.calls), len(self._outcomes) - 1)
        self.calls.append(amount)
        if not self._outcomes[index]:
            raise ProviderError(f"{self._message} (call {len(self.calls)})")
        return {"success": True, "amount": amount}


class BlockingProvider:
    """Provider that waits on an event before succeeding."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def charge(self, amount: float) -> dict[str, object]:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return {"success": True, "amount": amount}
