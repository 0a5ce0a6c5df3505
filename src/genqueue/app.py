"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from genqueue.api.routes import queue
from genqueue.core import timezone  # noqa: F401
from genqueue.core.config import Settings, configure_logging
from genqueue.core.database import setup_db_session
from genqueue.services.image_generation.replicate_client import ReplicateImageClient
from genqueue.services.image_storage import ImageStorage
from genqueue.uow import create_uow_factory
from genqueue.workers.queue_worker import QueueWorker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, build session/UoW factories, start the queue
      worker (runs crash recovery, then polls)
    - Shutdown: stop the queue worker, dispose the engine
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory

    client = ReplicateImageClient(
        api_token=settings.replicate_api_token,
        model_version=settings.replicate_model_version,
        face_swap_model=settings.replicate_face_swap_model,
        output_format=settings.image_output_format,
    )
    storage = ImageStorage(settings.public_dir)

    worker = QueueWorker(uow_factory, client, storage, settings)
    app.state.queue_worker = worker
    await worker.start()

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    await worker.stop()

    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="genqueue",
        description="Durable image generation queue",
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

    app.include_router(queue.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Database connectivity check plus queue worker state.

        Returns:
            200: {"status": "healthy", "worker_running": bool, "active": int, "queued": int}
            503: {"status": "unhealthy", "error": {...}} if the database is unreachable
        """
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))

            async with await app.state.uow_factory() as uow:
                backlog = await uow.queue.get_queue_status()

            worker = getattr(app.state, "queue_worker", None)
            logger.debug("health_check.success", active=backlog.active, queued=backlog.queued)
            return {
                "status": "healthy",
                "worker_running": bool(worker is not None and getattr(worker, "is_running", False)),
                "active": backlog.active,
                "queued": backlog.queued,
            }

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
            }

    return app


# Create app instance for uvicorn
app = create_app()
