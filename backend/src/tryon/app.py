"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tryon.api.routes import favorites, hairstyles, try_ons
from tryon.core.config import Settings, configure_logging
from tryon.core.database import check_database, setup_db_session
from tryon.core.state import GatewayState
from tryon.services.auth import SessionVerifier
from tryon.services.cache import create_cache_backend
from tryon.services.exceptions import FalApiError, FalClientConfigError, GatewayError
from tryon.services.fal.client import FalQueueClient
from tryon.services.generation import GenerationService
from tryon.services.try_on_cache import TryOnCache
from tryon.workers import run_state_sweeper

logger = structlog.get_logger()


class WorkerHandle:
    """Tracks the live task of a resilient worker across restarts."""

    def __init__(self, worker_name: str):
        self.worker_name = worker_name
        self.task: asyncio.Task | None = None
        self.restart_task: asyncio.Task | None = None
        self.restarts = 0

    async def stop(self) -> None:
        """Cancel the current worker task and any pending restart."""
        tasks = [t for t in (self.restart_task, self.task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def create_resilient_worker(
    coro_func,
    state: GatewayState,
    settings,
    worker_name: str,
    shutdown_event: asyncio.Event,
    restart_delay: float = 1,
) -> WorkerHandle:
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_state_sweeper)
        state: Gateway state container
        settings: Application settings
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        restart_delay: Seconds to wait before restarting a crashed worker

    Returns:
        WorkerHandle whose `task` always points at the running worker
    """
    handle = WorkerHandle(worker_name)

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=restart_delay,
                exc_info=exc,
            )
        else:
            # Sweeper loops forever, so a clean exit is unexpected
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=restart_delay,
            )

        async def restart_worker():
            await asyncio.sleep(restart_delay)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            handle.restarts += 1
            start()

        handle.restart_task = asyncio.create_task(restart_worker())

    def start():
        handle.task = asyncio.create_task(coro_func(state, settings))
        handle.task.add_done_callback(on_worker_done)

    start()
    return handle


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build in-memory state, cache and provider
      service, start the state sweeper
    - Shutdown: Stop the sweeper, close the cache connection

    A missing FAL_API_KEY does not prevent startup: the provider client is
    built lazily and try-on routes answer 503 until it is configured.
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)

    cache_backend = create_cache_backend(settings)
    gateway = GatewayState.from_settings(settings)

    app.state.session_factory = session_factory
    app.state.cache_backend = cache_backend
    app.state.gateway = gateway
    app.state.session_verifier = SessionVerifier.from_settings(settings)
    app.state.generation_service = GenerationService(
        client_factory=lambda: FalQueueClient.from_settings(settings),
        executor=gateway.fal_executor,
        cache=TryOnCache(cache_backend),
        model_id=settings.resolved_model_id,
    )

    shutdown_event = asyncio.Event()
    sweeper = create_resilient_worker(
        run_state_sweeper, gateway, settings, "state_sweeper", shutdown_event
    )

    logger.info(
        "application.startup",
        model_id=settings.resolved_model_id,
        cache_backend=cache_backend.name,
        fal_configured=bool(settings.fal_api_key),
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    await sweeper.stop()

    await cache_backend.close()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render any GatewayError as {"error": CODE, "message": ..., ...}."""
    if isinstance(exc, FalClientConfigError) or (
        isinstance(exc, FalApiError) and exc.status_code >= 500
    ):
        logger.error(
            "request.provider_error",
            path=request.url.path,
            error_code=exc.error_code,
            status_code=exc.status_code,
            error=exc.message,
        )

    return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=exc.headers)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Hairstyle Try-On API",
        description="Gateway in front of the fal.ai image generation queue",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)  # type: ignore[arg-type]

    app.include_router(try_ons.router)
    app.include_router(hairstyles.router)
    app.include_router(favorites.router)

    @app.get("/api/v1/health")
    async def health_check(request: Request, response: Response):
        """Health check endpoint with database and cache connectivity.

        The cache is best-effort, so an unreachable cache is reported but
        never makes the service unhealthy.

        Returns:
            200: {"status": "healthy", "services": {...}} if the database answers
            503: {"status": "unhealthy", "error": {...}} if the database check fails
        """
        timestamp = datetime.now(timezone.utc).isoformat()

        try:
            await check_database(request.app.state.session_factory)
        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
                "timestamp": timestamp,
            }

        cache_backend = request.app.state.cache_backend
        if await cache_backend.ping():
            cache_status = "connected"
        elif cache_backend.name == "disabled":
            cache_status = "disabled"
        else:
            cache_status = "unavailable"

        logger.debug("health_check.success", cache=cache_status)
        return {
            "status": "healthy",
            "services": {"database": "connected", "cache": cache_status},
            "timestamp": timestamp,
        }

    return app


# Create app instance for uvicorn
app = create_app()
