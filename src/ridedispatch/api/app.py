"""FastAPI application factory for the dispatch service."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from ridedispatch.api.auth import verify_api_key
from ridedispatch.api.errors import register_error_handlers
from ridedispatch.api.routes import drivers, fares, locations, metrics, rides
from ridedispatch.service import RideService

logger = logging.getLogger(__name__)


def create_app(service: RideService, api_key: str | None = None) -> FastAPI:
    """Create FastAPI application with injected dependencies.

    Args:
        service: RideService instance shared by all requests
        api_key: Expected X-API-Key value; defaults to the service settings
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Run the staleness sweeper for the lifetime of the app."""
        service.start()
        yield
        service.stop()

    app = FastAPI(
        title="Ride Dispatch API",
        version="0.1.0",
        description="Ride requests, driver assignment and ride lifecycle",
        lifespan=lifespan,
    )

    # Set core dependencies immediately (not in lifespan) so they're available for testing
    app.state.service = service
    app.state.api_key = api_key if api_key is not None else service.settings.api.key

    register_error_handlers(app)

    app.include_router(rides.router, prefix="/rides", tags=["rides"])
    app.include_router(drivers.router, prefix="/drivers", tags=["drivers"])
    app.include_router(locations.router, prefix="/locations", tags=["locations"])
    app.include_router(fares.router, prefix="/fares", tags=["fares"])
    app.include_router(metrics.router, tags=["metrics"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring (unauthenticated for infrastructure)."""
        return {"status": "healthy"}

    @app.get("/auth/validate")
    async def validate_api_key_endpoint(
        _: str = Depends(verify_api_key),
    ) -> dict[str, str]:
        """Returns 200 when the X-API-Key header is valid."""
        return {"status": "authenticated"}

    return app
