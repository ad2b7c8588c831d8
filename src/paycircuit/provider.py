from __future__ import annotations

import random
from typing import Protocol, cast

import httpx

from paycircuit.errors import TransientError

DEFAULT_FAILURE_RATE = 0.3
SIMULATED_FAILURE_MESSAGE = "Payment failed due to provider error."


class ProviderError(TransientError):
    """Raised when one charge attempt against the provider fails."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Initialize provider-error metadata.

        Args:
            message: Human-readable error message.
            http_status: Optional HTTP status observed from the provider.
            response_body: Optional response payload text.
        """
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.response_body = response_body


class PaymentProvider(Protocol):
    """Downstream payment dependency. Has no retry semantics of its own."""

    async def charge(self, amount: float) -> dict[str, object]:
        """Charge ``amount`` or raise ``ProviderError``."""


class SimulatedPaymentProvider:
    """Stand-in provider that fails a fixed share of charges at random."""

    def __init__(
        self,
        *,
        failure_rate: float = DEFAULT_FAILURE_RATE,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self._failure_rate = failure_rate
        self._rng = random.Random() if rng is None else rng

    async def charge(self, amount: float) -> dict[str, object]:
        if self._rng.random() < self._failure_rate:
            raise ProviderError(SIMULATED_FAILURE_MESSAGE)
        return {"success": True, "amount": amount}


class HttpPaymentProvider:
    """Provider adapter that posts charges to a remote HTTP endpoint."""

    def __init__(self, *, client: httpx.AsyncClient, charge_url: str) -> None:
        """Create an HTTP provider adapter.

        Args:
            client: Shared async HTTP client. Timeouts are configured on it.
            charge_url: Absolute URL accepting ``POST {"amount": ...}``.
        """
        self._client = client
        self._charge_url = charge_url

    async def charge(self, amount: float) -> dict[str, object]:
        try:
            response = await self._client.post(self._charge_url, json={"amount": amount})
        except httpx.RequestError as exc:
            raise ProviderError(f"Payment provider unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                self._error_message(response),
                http_status=response.status_code,
                response_body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                "Payment provider returned invalid JSON.",
                http_status=response.status_code,
                response_body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderError(
                "Payment provider returned invalid JSON.",
                http_status=response.status_code,
                response_body=response.text,
            )
        return cast(dict[str, object], payload)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("error") or payload.get("message")
            if isinstance(message, str) and message:
                return message
        return f"Payment provider returned HTTP {response.status_code}."
