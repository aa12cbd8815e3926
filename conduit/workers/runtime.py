"""
Worker process runtime.

Acquires the process-scoped resources once (logging, HTTP session, Redis
pools, database engine, OpenAI client), wires the services into one worker
pool per queue and drains them on SIGTERM/SIGINT before releasing the
resources again.

Without REDIS_URL or DATABASE_URL the in-memory backends are used, which is
only useful for local development.
"""

import asyncio
import signal

import aiohttp

from conduit.ai.enrichment import AIEnrichmentService
from conduit.ai.openai_provider import OpenAIModelProvider
from conduit.campaigns.orchestrator import CampaignOrchestrator
from conduit.core.config.settings import settings
from conduit.core.logging.logger import get_app_logger, setup_app_logging
from conduit.database.session_manager import SessionManager
from conduit.database.sql_store import SqlConversationStore
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.model_provider_interface import IModelProvider
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.messaging.dispatcher import OutboundDispatcher
from conduit.messaging.evolution_client import EvolutionClient
from conduit.messaging.meta_client import GraphApiClient
from conduit.persistence.memory import (
    MemoryBroadcaster,
    MemoryConversationStore,
    MemoryJobQueue,
)
from conduit.persistence.redis import RedisBroadcaster, RedisJobQueue, RedisManager
from conduit.services.inbound_pipeline import InboundPipeline
from conduit.workers.handlers import JobHandlers
from conduit.workers.queues import QUEUES
from conduit.workers.worker_pool import WorkerPool


def build_handlers(
    store: IConversationStore,
    broadcaster: IBroadcaster,
    queue: IJobQueue,
    session: aiohttp.ClientSession | None = None,
    provider: IModelProvider | None = None,
) -> JobHandlers:
    """Wire the services shared by every queue."""
    evolution = EvolutionClient(session) if session is not None else None
    graph = GraphApiClient(session) if session is not None else None
    return JobHandlers(
        pipeline=InboundPipeline(store, broadcaster, queue),
        dispatcher=OutboundDispatcher(store, broadcaster, evolution, graph),
        orchestrator=CampaignOrchestrator(store, broadcaster, queue),
        enrichment=AIEnrichmentService(store, broadcaster, provider, queue),
    )


def build_pools(
    queue: IJobQueue,
    handlers: JobHandlers,
    queue_names: list[str] | None = None,
) -> dict[str, WorkerPool]:
    return {
        name: WorkerPool(
            queue,
            name,
            handlers.for_queue(name),
            on_exhausted=handlers.exhausted_hook(name),
        )
        for name in (queue_names or list(QUEUES))
    }


class WorkerRuntime:
    """
    Args:
        queue_names: Queues to consume; all of them when None
        drain_timeout: Seconds to wait for in-flight jobs on shutdown
    """

    def __init__(self, queue_names: list[str] | None = None, drain_timeout: float = 30.0):
        self.queue_names = queue_names or list(QUEUES)
        self.drain_timeout = drain_timeout

        self.http_session: aiohttp.ClientSession | None = None
        self.sessions: SessionManager | None = None
        self.pools: dict[str, WorkerPool] = {}
        self._stop_requested = asyncio.Event()

    async def start(self) -> None:
        setup_app_logging()
        logger = get_app_logger()
        logger.info(f"🚀 Starting Conduit worker v{settings.version} ({settings.environment})")

        connector = aiohttp.TCPConnector(
            limit=100, keepalive_timeout=30, enable_cleanup_closed=True
        )
        self.http_session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=settings.provider_timeout),
        )

        queue, broadcaster = await self._build_broker()
        store = await self._build_store()
        provider = OpenAIModelProvider.from_settings(self.http_session)
        if not provider.is_available:
            logger.warning("OPENAI_API_KEY not set - AI jobs will use fallbacks")

        handlers = build_handlers(store, broadcaster, queue, self.http_session, provider)
        self.pools = build_pools(queue, handlers, self.queue_names)
        for pool in self.pools.values():
            pool.start()
        logger.info(f"✅ Worker ready - queues: {', '.join(self.pools)}")

    async def _build_broker(self) -> tuple[IJobQueue, IBroadcaster]:
        logger = get_app_logger()
        if not settings.has_redis:
            logger.warning("REDIS_URL not set - using the in-memory queue (development only)")
            return MemoryJobQueue(), MemoryBroadcaster()

        await RedisManager.initialize()
        queue = RedisJobQueue(await RedisManager.get_client("queue"))
        broadcaster = RedisBroadcaster(await RedisManager.get_client("events"))
        return queue, broadcaster

    async def _build_store(self) -> IConversationStore:
        logger = get_app_logger()
        if not settings.has_database:
            logger.warning("DATABASE_URL not set - using the in-memory store (development only)")
            return MemoryConversationStore()

        self.sessions = SessionManager(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        await self.sessions.initialize(create_tables=settings.is_development)
        return SqlConversationStore(self.sessions)

    def request_stop(self) -> None:
        if not self._stop_requested.is_set():
            get_app_logger().info("🛑 Shutdown requested - draining workers")
            self._stop_requested.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.request_stop))

    async def stop(self) -> None:
        logger = get_app_logger()
        await asyncio.gather(
            *(pool.stop(self.drain_timeout) for pool in self.pools.values())
        )
        self.pools = {}

        if RedisManager.is_initialized():
            await RedisManager.cleanup()
        if self.sessions is not None:
            await self.sessions.cleanup()
            self.sessions = None
        if self.http_session is not None and not self.http_session.closed:
            await self.http_session.close()
        self.http_session = None
        logger.info("✅ Worker stopped")

    async def run(self) -> None:
        """Start, block until a stop signal, then drain and clean up."""
        await self.start()
        self._install_signal_handlers()
        try:
            await self._stop_requested.wait()
        finally:
            await self.stop()
