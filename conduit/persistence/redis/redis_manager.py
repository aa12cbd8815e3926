"""
Redis lifecycle management for the worker and the webhook receiver.

Wraps RedisClient with settings-driven initialization, health checks and
cleanup.
"""

import logging
from typing import Any

from redis.asyncio import Redis

from conduit.core.config.settings import settings

from .redis_client import POOL_DB_MAPPING, PoolAlias, RedisClient

logger = logging.getLogger(__name__)


class RedisManager:
    """Application-level wrapper around RedisClient."""

    _initialized: bool = False

    @classmethod
    async def initialize(
        cls, redis_url: str | None = None, max_connections: int | None = None
    ) -> None:
        """
        Initialize Redis pools and verify they respond.

        Args:
            redis_url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Max connections per pool (defaults to settings)

        Raises:
            ValueError: If no Redis URL is configured
            ConnectionError: If a pool fails its health check
        """
        if cls._initialized:
            logger.info("Redis pools already initialized - skipping")
            return

        url = redis_url or settings.redis_url
        if not url:
            raise ValueError("REDIS_URL is required for the Redis broker")

        connections = max_connections or settings.redis_max_connections
        logger.info(f"Setting up Redis pools from {url} (max_connections: {connections})")

        try:
            RedisClient.setup_single_url(
                base_url=url,
                max_connections=connections,
                socket_timeout=settings.redis_connection_timeout,
                health_check_interval=settings.redis_health_check_interval,
            )
            await cls._verify_pools()
            cls._initialized = True
            pool_details = ", ".join(
                f"{alias}:db{db}" for alias, db in POOL_DB_MAPPING.items()
            )
            logger.info(f"✅ Redis pools ready ({pool_details})")
        except Exception as e:
            logger.error(f"❌ Redis pool initialization failed: {e}", exc_info=True)
            raise

    @classmethod
    async def _verify_pools(cls) -> None:
        failed_pools = []
        for alias in POOL_DB_MAPPING:
            pool_alias: PoolAlias = alias  # type: ignore
            try:
                await RedisClient.get(pool_alias)
            except Exception as e:
                failed_pools.append(f"{alias}:db{POOL_DB_MAPPING[alias]}")
                logger.error(f"❌ Redis pool '{alias}' health check failed: {e}")

        if failed_pools:
            raise ConnectionError(f"Failed Redis pools: {', '.join(failed_pools)}")

    @classmethod
    async def get_health_status(cls) -> dict[str, Any]:
        """Per-pool health information for monitoring."""
        health_status: dict[str, Any] = {"initialized": cls._initialized, "pools": {}}
        if not cls._initialized:
            health_status["message"] = "Redis not initialized"
            return health_status

        for alias in POOL_DB_MAPPING:
            pool_alias: PoolAlias = alias  # type: ignore
            try:
                await RedisClient.get(pool_alias)
                health_status["pools"][alias] = {"status": "healthy", "error": None}
            except Exception as e:
                health_status["pools"][alias] = {"status": "unhealthy", "error": str(e)}
        return health_status

    @classmethod
    async def get_client(cls, alias: PoolAlias = "queue") -> Redis:
        if not cls._initialized:
            raise RuntimeError("RedisManager.initialize() must be called first")
        return await RedisClient.get(alias)

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    async def cleanup(cls) -> None:
        """Close every pool. Safe to call when never initialized."""
        if not cls._initialized:
            return
        try:
            await RedisClient.close()
            logger.info("Redis pools closed")
        finally:
            cls._initialized = False
