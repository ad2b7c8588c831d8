"""Time-bounded ledger of payment attempt outcomes."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

DEFAULT_WINDOW = timedelta(minutes=10)
BREAKER_REJECTION_ERROR = "circuit breaker open"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AttemptRecord:
    """Final outcome of one externally visible payment request."""

    success: bool
    error: str | None
    timestamp: datetime


class AttemptLedger:
    """Append-only record of attempts, evicted by age on every append.

    Records are appended in timestamp order, so eviction only ever pops from
    the front. Reads never evict.
    """

    def __init__(
        self,
        *,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if window <= timedelta(0):
            raise ValueError("window must be > 0")
        self.window = window
        self._clock = _utcnow if clock is None else clock
        self._records: deque[AttemptRecord] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _evict_locked(self, now: datetime) -> None:
        cutoff = now - self.window
        while self._records and self._records[0].timestamp < cutoff:
            self._records.popleft()

    def record(
        self,
        success: bool,
        error: str | None = None,
        timestamp: datetime | None = None,
    ) -> AttemptRecord:
        """Append one outcome and drop everything older than the window."""
        now = self._clock()
        entry = AttemptRecord(
            success=success,
            error=error,
            timestamp=now if timestamp is None else timestamp,
        )
        with self._lock:
            self._records.append(entry)
            self._evict_locked(now)
        return entry

    def snapshot(self) -> tuple[AttemptRecord, ...]:
        """Return in-window records, oldest first.

        Stale records left behind since the last append are filtered out of
        the returned view but not removed.
        """
        cutoff = self._clock() - self.window
        with self._lock:
            return tuple(item for item in self._records if item.timestamp >= cutoff)

    def restore(self, records: Iterable[AttemptRecord]) -> None:
        """Replace the ledger contents, keeping only in-window records."""
        ordered = sorted(records, key=lambda item: item.timestamp)
        with self._lock:
            self._records = deque(ordered)
            self._evict_locked(self._clock())
