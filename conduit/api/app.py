"""
Webhook receiver application.

``create_app`` builds the FastAPI app. The lifespan connects the job queue to
Redis unless a queue was injected (tests and the in-memory development mode).
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_app_logger, setup_app_logging
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.persistence.memory import MemoryJobQueue
from conduit.persistence.redis import RedisJobQueue, RedisManager

from .routes import health_router, webhooks_router


def create_app(job_queue: IJobQueue | None = None) -> FastAPI:
    """
    Args:
        job_queue: Queue to enqueue webhooks on; built from settings when None
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_app_logging()
        logger = get_app_logger()
        logger.info(f"🚀 Starting Conduit webhook receiver v{settings.version}")

        owns_redis = False
        if job_queue is not None:
            app.state.job_queue = job_queue
        elif settings.has_redis:
            await RedisManager.initialize()
            owns_redis = True
            app.state.job_queue = RedisJobQueue(await RedisManager.get_client("queue"))
        else:
            logger.warning("REDIS_URL not set - webhooks go to an in-memory queue")
            app.state.job_queue = MemoryJobQueue()

        logger.info("✅ Webhook receiver ready")
        try:
            yield
        finally:
            if owns_redis:
                await RedisManager.cleanup()
            logger.info("🛑 Webhook receiver stopped")

    app = FastAPI(
        title="Conduit",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )
    if job_queue is not None:
        # Available before startup so TestClient without a context manager works
        app.state.job_queue = job_queue
    app.include_router(health_router)
    app.include_router(webhooks_router)
    return app
