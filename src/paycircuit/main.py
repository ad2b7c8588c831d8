from __future__ import annotations

import uvicorn

from paycircuit.api import create_app
from paycircuit.logging import configure_structlog, log_info
from paycircuit.settings import PaymentServiceSettings


def main() -> None:
    """Load settings, configure logging and serve the payment API."""
    settings = PaymentServiceSettings()
    logger = configure_structlog(log_level=settings.log_level)
    log_info(
        logger,
        "service.starting",
        host=settings.host,
        port=settings.port,
        provider="http" if settings.provider_url else "simulated",
        state_file=settings.state_file,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
