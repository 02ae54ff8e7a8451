import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ipgate.app.core.config import LimiterConfig, settings
from ipgate.app.core.logging import get_logger, setup_logging
from ipgate.app.exceptions import ConfigurationError, StoreUnavailableError
from ipgate.app.limiter import GarbageCollector, MaintenanceScheduler
from ipgate.app.middleware.rate_limit import RateLimitMiddleware
from ipgate.app.middleware.request_id import RequestIdMiddleware
from ipgate.app.store import StateStore, get_state_store


def create_app(
    config: Optional[LimiterConfig] = None,
    store: Optional[StateStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Limiter configuration, built from settings when omitted
        store: Shared state store, taken from get_state_store() when omitted

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    config = config or LimiterConfig.from_settings(settings)
    store = store if store is not None else get_state_store()
    scheduler = MaintenanceScheduler(
        GarbageCollector(store),
        probability=config.gc_probability,
        interval_seconds=config.gc_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Verifies the state store on startup and starts the periodic
        window sweep; stops it and closes the store on shutdown.
        """
        try:
            await store.ping()
        except StoreUnavailableError as e:
            logger.error("State store connection failed!")
            raise ConfigurationError(f"Cannot connect to state store: {e}") from e

        await scheduler.start()
        logger.info(
            "Application startup complete",
            extra={
                "store": type(store).__name__,
                "max_requests": config.max_requests,
                "time_interval": config.time_interval,
                "ban_time": config.ban_time,
                "exceptions": list(config.exceptions),
            }
        )

        yield

        await scheduler.stop()
        await store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="ipgate",
        description="Per-IP request admission control with temporary bans",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.limiter_config = config
    app.state.state_store = store
    app.state.maintenance = scheduler

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        RateLimitMiddleware,
        store=store,
        config=config,
        scheduler=scheduler,
    )

    # Request ID middleware (outermost, so rate limit logs can carry the ID)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def index() -> dict[str, Any]:
        """Echo the server time for requests that were admitted."""
        return {"time": int(time.time())}

    @app.get("/health")
    async def health() -> JSONResponse:
        """Health check endpoint with state store status."""
        try:
            await store.ping()
        except StoreUnavailableError as e:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "degraded",
                    "components": {"store": {"status": "error", "error": str(e)[:100]}},
                },
            )
        return JSONResponse(
            content={
                "status": "ok",
                "components": {
                    "store": {"status": "ok", "type": type(store).__name__},
                    "maintenance": {"sweep_running": scheduler.sweep_running},
                },
            }
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        """Handle StoreUnavailableError and return HTTP 503 response."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "store_unavailable", "message": exc.message, "operation": exc.operation},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; the full details are
        logged server-side.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            }
        )
        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
