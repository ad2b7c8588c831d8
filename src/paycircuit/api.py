"""FastAPI application exposing the payment service."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import httpx
import structlog
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from paycircuit.orchestrator import PaymentOutcome
from paycircuit.persistence import AbstractStateStore, JsonFileStateStore
from paycircuit.provider import (
    HttpPaymentProvider,
    PaymentProvider,
    SimulatedPaymentProvider,
)
from paycircuit.schemas import (
    MetricsResponse,
    PaymentErrorResponse,
    PaymentRequestBody,
    PaymentSuccessResponse,
    StatusResponse,
    SummaryResponse,
)
from paycircuit.service import PaymentService
from paycircuit.settings import PaymentServiceSettings

router = APIRouter()


def get_payment_service(request: Request) -> PaymentService:
    """Return the service instance owned by the running application."""
    return request.app.state.payment_service


PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]


@router.post(
    "/pay",
    response_model=PaymentSuccessResponse,
    responses={
        500: {"model": PaymentErrorResponse, "description": "Retries exhausted"},
        503: {"model": PaymentErrorResponse, "description": "Circuit breaker open"},
    },
)
async def pay(
    body: PaymentRequestBody,
    service: PaymentServiceDep,
) -> PaymentSuccessResponse | JSONResponse:
    result = await service.submit_payment(body.to_request())
    if result.outcome == PaymentOutcome.SUCCEEDED:
        return PaymentSuccessResponse(result=result.value or {})

    error = PaymentErrorResponse(error=result.error or "", reason=result.reason)
    if result.outcome == PaymentOutcome.REJECTED:
        headers = None
        if result.retry_after:
            headers = {"Retry-After": str(math.ceil(result.retry_after))}
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error.model_dump(),
            headers=headers,
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump(),
    )


@router.get("/status", response_model=StatusResponse)
async def breaker_status(service: PaymentServiceDep) -> StatusResponse:
    return StatusResponse.from_status(service.status())


@router.get("/status/summary", response_model=SummaryResponse)
async def breaker_summary(service: PaymentServiceDep) -> SummaryResponse:
    return SummaryResponse(summary=service.summary())


@router.get("/metrics", response_model=MetricsResponse)
async def payment_metrics(service: PaymentServiceDep) -> MetricsResponse:
    return MetricsResponse.from_snapshot(service.metrics_snapshot())


def build_provider(
    settings: PaymentServiceSettings,
    client: httpx.AsyncClient | None,
) -> PaymentProvider:
    """Choose the HTTP provider when a URL is configured, else the simulator."""
    if settings.provider_url is not None and client is not None:
        return HttpPaymentProvider(client=client, charge_url=settings.provider_url)
    return SimulatedPaymentProvider(failure_rate=settings.provider_failure_rate)


def build_store(settings: PaymentServiceSettings) -> AbstractStateStore | None:
    if settings.state_file is None:
        return None
    return JsonFileStateStore(settings.state_file)


def create_app(
    settings: PaymentServiceSettings | None = None,
    *,
    service: PaymentService | None = None,
) -> FastAPI:
    """Build the ASGI app.

    Args:
        settings: Settings used to build a service at startup. Read from the
            environment when omitted.
        service: Prebuilt service. When given it is attached immediately and
            the lifespan does not build or close one.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            yield
            return

        resolved = PaymentServiceSettings() if settings is None else settings
        logger = structlog.stdlib.get_logger("paycircuit")
        client: httpx.AsyncClient | None = None
        if resolved.provider_url is not None:
            client = httpx.AsyncClient(timeout=resolved.provider_timeout_seconds)
        owned = PaymentService.from_settings(
            resolved,
            provider=build_provider(resolved, client),
            store=build_store(resolved),
            logger=logger,
        )
        owned.load_state()
        app.state.payment_service = owned
        try:
            yield
        finally:
            await owned.close()
            if client is not None:
                await client.aclose()

    app = FastAPI(title="paycircuit", lifespan=lifespan)
    if service is not None:
        app.state.payment_service = service
    app.include_router(router)
    return app
