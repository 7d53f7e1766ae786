"""Service entry point: configure logging, build the core, serve HTTP."""

import logging

import uvicorn

from ridedispatch.api.app import create_app
from ridedispatch.dispatch_logging import setup_logging
from ridedispatch.service import create_service
from ridedispatch.settings import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.format == "json",
        environment=settings.logging.environment,
    )

    service = create_service(settings)
    app = create_app(service)

    logger.info(
        "Starting ride dispatch service on %s:%d (store=%s)",
        settings.api.host,
        settings.api.port,
        settings.store.backend,
    )
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_level="info")


if __name__ == "__main__":
    main()
