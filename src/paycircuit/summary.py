"""Deterministic status sentence over the attempt ledger and breaker state."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timedelta

from paycircuit.circuit_breaker import CircuitState
from paycircuit.ledger import DEFAULT_WINDOW, AttemptRecord

_BREAKER_SENTENCES: dict[CircuitState, str] = {
    CircuitState.OPEN: (
        "The circuit breaker was triggered and is currently open, "
        "blocking new attempts."
    ),
    CircuitState.HALF_OPEN: "The circuit breaker is half-open and testing recovery.",
    CircuitState.CLOSED: "The circuit breaker is closed and operating normally.",
}


def window_failure_rate(
    records: Iterable[AttemptRecord],
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> int:
    """Return the in-window failure percentage, rounded half up."""
    cutoff = now - window
    total = 0
    failures = 0
    for record in records:
        if record.timestamp < cutoff:
            continue
        total += 1
        if not record.success:
            failures += 1
    if not total:
        return 0
    return math.floor(failures / total * 100 + 0.5)


def _describe_window(window: timedelta) -> str:
    minutes = window.total_seconds() / 60
    if minutes.is_integer():
        count = int(minutes)
        return f"{count} minute" if count == 1 else f"{count} minutes"
    seconds = window.total_seconds()
    return f"{seconds:g} second" if seconds == 1 else f"{seconds:g} seconds"


def summarize(
    records: Iterable[AttemptRecord],
    state: CircuitState,
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> str:
    """Render the human-readable payment health summary."""
    failure_rate = window_failure_rate(records, now, window)
    breaker_sentence = _BREAKER_SENTENCES.get(
        state, _BREAKER_SENTENCES[CircuitState.CLOSED]
    )
    return (
        f"In the last {_describe_window(window)}, {failure_rate}% of payment "
        f"attempts failed due to provider instability. {breaker_sentence}"
    )
