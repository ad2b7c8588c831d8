"""State snapshot persistence for restart continuity.

Storage is decoupled from the service. Stores raise ``PersistenceError``;
the service logs it and falls back to in-memory defaults.

Important: ``HALF_OPEN`` is an ephemeral probe mode. It may appear in a saved
document but is always restored as ``OPEN``.
Timestamps must carry a UTC offset; naive values fail validation.
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError

from paycircuit.circuit_breaker import BreakerSnapshot, CircuitState
from paycircuit.errors import PersistenceError
from paycircuit.ledger import AttemptRecord
from paycircuit.metrics import CircuitTransition, MetricsSnapshot

SNAPSHOT_VERSION = 1


@dataclass(frozen=True)
class ServiceState:
    """Everything the payment service needs to resume after a restart."""

    breaker: BreakerSnapshot
    metrics: MetricsSnapshot
    ledger: tuple[AttemptRecord, ...]
    last_failure_at: datetime | None = None


class _BreakerDocument(BaseModel):
    name: str
    state: CircuitState
    failure_count: int = Field(ge=0)
    opened_at: AwareDatetime | None = None


class _TransitionDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_state: CircuitState = Field(alias="from")
    to_state: CircuitState = Field(alias="to")
    at: AwareDatetime


class _MetricsDocument(BaseModel):
    total_attempts: int = Field(ge=0)
    total_successes: int = Field(ge=0)
    total_failures: int = Field(ge=0)
    total_retries: int = Field(ge=0)
    circuit_transitions: list[_TransitionDocument] = Field(default_factory=list)


class _AttemptDocument(BaseModel):
    success: bool
    error: str | None = None
    timestamp: AwareDatetime


class StateDocument(BaseModel):
    """JSON shape of a persisted ``ServiceState``."""

    version: Literal[1] = SNAPSHOT_VERSION
    breaker: _BreakerDocument
    metrics: _MetricsDocument
    ledger: list[_AttemptDocument] = Field(default_factory=list)
    last_failure_at: AwareDatetime | None = None

    @classmethod
    def from_state(cls, state: ServiceState) -> StateDocument:
        breaker = state.breaker
        metrics = state.metrics
        return cls(
            breaker=_BreakerDocument(
                name=breaker.name,
                state=breaker.state,
                failure_count=breaker.failure_count,
                opened_at=breaker.opened_at,
            ),
            metrics=_MetricsDocument(
                total_attempts=metrics.total_attempts,
                total_successes=metrics.total_successes,
                total_failures=metrics.total_failures,
                total_retries=metrics.total_retries,
                circuit_transitions=[
                    _TransitionDocument(
                        from_state=item.from_state,
                        to_state=item.to_state,
                        at=item.at,
                    )
                    for item in metrics.circuit_transitions
                ],
            ),
            ledger=[
                _AttemptDocument(
                    success=item.success,
                    error=item.error,
                    timestamp=item.timestamp,
                )
                for item in state.ledger
            ],
            last_failure_at=state.last_failure_at,
        )

    def to_state(self) -> ServiceState:
        return ServiceState(
            breaker=BreakerSnapshot(
                name=self.breaker.name,
                state=self.breaker.state,
                failure_count=self.breaker.failure_count,
                opened_at=self.breaker.opened_at,
            ),
            metrics=MetricsSnapshot(
                total_attempts=self.metrics.total_attempts,
                total_successes=self.metrics.total_successes,
                total_failures=self.metrics.total_failures,
                total_retries=self.metrics.total_retries,
                circuit_transitions=tuple(
                    CircuitTransition(
                        from_state=item.from_state,
                        to_state=item.to_state,
                        at=item.at,
                    )
                    for item in self.metrics.circuit_transitions
                ),
            ),
            ledger=tuple(
                AttemptRecord(
                    success=item.success,
                    error=item.error,
                    timestamp=item.timestamp,
                )
                for item in self.ledger
            ),
            last_failure_at=self.last_failure_at,
        )


class AbstractStateStore(ABC):
    """Abstract snapshot store interface."""

    @abstractmethod
    def load(self) -> ServiceState | None:
        """Return the stored state, or ``None`` when nothing was saved."""

    @abstractmethod
    def save(self, state: ServiceState) -> None:
        """Persist ``state``, replacing any previous snapshot."""


class InMemoryStateStore(AbstractStateStore):
    """Store that keeps the last saved state in process memory."""

    def __init__(self, state: ServiceState | None = None) -> None:
        self._state = state

    def load(self) -> ServiceState | None:
        return self._state

    def save(self, state: ServiceState) -> None:
        self._state = state


class JsonFileStateStore(AbstractStateStore):
    """Store that writes the snapshot as a pretty-printed JSON file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> ServiceState | None:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read state file {self.path}: {exc}") from exc

        try:
            document = StateDocument.model_validate_json(raw)
        except ValidationError as exc:
            raise PersistenceError(
                f"State file {self.path} is not a valid snapshot: "
                f"{exc.error_count()} error(s)"
            ) from exc
        return document.to_state()

    def save(self, state: ServiceState) -> None:
        payload = StateDocument.from_state(state).model_dump_json(by_alias=True, indent=2)
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write state file {self.path}: {exc}") from exc
