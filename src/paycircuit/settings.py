from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from paycircuit.logging import get_log_level_value
from paycircuit.retry import BackoffSchedule

ENV_PREFIX = "PAYCIRCUIT_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class PaymentServiceSettings(BaseSettings):
    """Runtime settings for the payment service, read from ``PAYCIRCUIT_*``."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    failure_threshold: int = Field(default=5, ge=1)
    cooldown_seconds: float = Field(default=30.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    backoff_schedule_ms: tuple[Annotated[int, Field(ge=0)], ...] = (500, 1000, 2000)
    history_window_seconds: float = Field(default=600.0, gt=0)
    breaker_name: str = "payment-provider"

    state_file: str | None = None

    provider_url: str | None = None
    provider_timeout_seconds: float = Field(default=10.0, gt=0)
    provider_failure_rate: float = Field(default=0.3, ge=0.0, le=1.0)

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, gt=0, lt=65536)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            get_log_level_value(normalized)
            return normalized
        return value

    @field_validator("state_file", "provider_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def backoff_schedule(self) -> BackoffSchedule:
        """Build the retry schedule from attempt cap and millisecond delays."""
        return BackoffSchedule.from_milliseconds(
            self.max_retries, self.backoff_schedule_ms
        )

    def history_window(self) -> timedelta:
        return timedelta(seconds=self.history_window_seconds)
