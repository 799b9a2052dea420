"""FastAPI application factory."""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from evidvault.api.routes import files, payments, sessions, storage, system
from evidvault.core import timezone  # noqa: F401  (sets TZ=UTC)
from evidvault.core.config import Settings, configure_logging
from evidvault.core.database import setup_db_session
from evidvault.core.dependencies import build_services
from evidvault.uow import create_uow_factory
from evidvault.workers.migration_worker import run_migration_worker

logger = structlog.get_logger()


class SupervisedWorker:
    """Keeps one background coroutine alive until stop() is called.

    A crashed or unexpectedly finished run is logged and started again after
    restart_delay seconds. Cancellation during shutdown is not restarted.
    """

    def __init__(
        self,
        name: str,
        run: Callable[[], Awaitable[None]],
        restart_delay: float = 1.0,
    ):
        self.name = name
        self._run = run
        self._restart_delay = restart_delay
        self._stopping = False
        self._task: asyncio.Task | None = None
        self._restart: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        self._task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        if self._stopping or task.cancelled():
            logger.info("worker.stopped", worker=self.name)
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "worker.crashed",
                worker=self.name,
                error_type=type(exc).__name__,
                error=str(exc),
                retry_in_seconds=self._restart_delay,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.exited", worker=self.name, retry_in_seconds=self._restart_delay
            )
        self._restart = asyncio.create_task(self._restart_later())

    async def _restart_later(self) -> None:
        await asyncio.sleep(self._restart_delay)
        if self._stopping:
            return
        logger.info("worker.restarting", worker=self.name)
        self.start()

    async def stop(self) -> None:
        self._stopping = True
        pending = [t for t in (self._task, self._restart) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire settings, database, pipeline services and the migration worker.

    The worker only runs when MIGRATION_WORKER_ENABLED is set; it is stopped
    before the process exits.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    services = build_services(settings, uow_factory)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.services = services

    worker = None
    if settings.migration_worker_enabled:
        worker = SupervisedWorker(
            "migration", partial(run_migration_worker, services.orchestrator, settings)
        )
        worker.start()
    else:
        logger.info("worker.disabled", worker="migration")

    logger.info("application.startup", db_host=settings.database_url.split("@")[-1])
    try:
        yield
    finally:
        logger.info("application.shutdown")
        if worker is not None:
            await worker.stop()


def create_app() -> FastAPI:
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Evidvault API",
        description="Evidence pinning, durable storage migration and session audit anchoring",
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

    app.include_router(files.router)
    app.include_router(payments.router)
    app.include_router(sessions.router)
    app.include_router(storage.router)
    app.include_router(system.router)

    @app.get("/health")
    async def health_check(response: Response):
        """200 when the database answers SELECT 1, 503 with the error otherwise."""
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "error": {"type": type(e).__name__, "message": str(e)}}
        return {"status": "healthy"}

    return app


app = create_app()
