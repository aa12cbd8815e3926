# conduit/persistence/redis/redis_client.py

"""
Redis helper that is **fork-safe** and asyncio-native for the job broker.

Uvicorn workers and the worker CLI can ``fork()`` after import time. Re-using a
parent-process connection in the child silently breaks blocking pops and
pub/sub and can leak file descriptors, so each process builds its own pools.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import ClassVar, Literal, cast

from redis.asyncio import ConnectionPool, Redis

log = logging.getLogger("RedisClient")

# Pool aliases with their database numbers
PoolAlias = Literal["queue", "events"]

POOL_DB_MAPPING = {
    "queue": 0,  # Job queues (waiting/delayed/active sets, job bodies)
    "events": 1,  # Real-time broadcast publishing
}


class RedisClient:
    """
    Fork-safe, asyncio-native multi-pool Redis manager.

    - "queue" (db 0): job queue data structures
    - "events" (db 1): publish connection for broadcasts
    """

    _pools: ClassVar[dict[PoolAlias, ConnectionPool]] = {}
    _clients: ClassVar[dict[PoolAlias, Redis]] = {}
    _pid: ClassVar[int | None] = None

    # ---------- life-cycle --------------------------------------------------

    @classmethod
    def setup_single_url(
        cls,
        base_url: str,
        *,
        max_connections: int = 64,
        socket_timeout: float | None = None,
        health_check_interval: int = 0,
    ) -> None:
        """
        Set up every pool from one base URL by appending database numbers.

        Args:
            base_url: Base Redis URL (e.g., "redis://localhost:6379")
            max_connections: Max connections per pool
            socket_timeout: Socket connect timeout in seconds
            health_check_interval: Seconds between connection health checks
        """
        if base_url.rstrip("/").split("/")[-1].isdigit():
            log.warning(
                f"Base URL '{base_url}' appears to contain a database number. Using its host only."
            )
            base_url = "/".join(base_url.rstrip("/").split("/")[:-1])

        for alias, db_num in POOL_DB_MAPPING.items():
            url = f"{base_url.rstrip('/')}/{db_num}"
            cls._setup_pool(
                cast(PoolAlias, alias),
                url,
                max_connections,
                socket_timeout,
                health_check_interval,
            )

    @classmethod
    def _setup_pool(
        cls,
        alias: PoolAlias,
        url: str,
        max_connections: int,
        socket_timeout: float | None,
        health_check_interval: int,
    ) -> None:
        pid = os.getpid()
        if cls._pid is None:
            cls._pid = pid
        elif cls._pid != pid:
            # process forked – discard inherited pools
            cls._pools.clear()
            cls._clients.clear()
            cls._pid = pid

        if alias in cls._pools:
            log.debug(f"Redis pool '{alias}' already exists in PID {pid}")
            return

        log.info(f"Initialising Redis pool '{alias}' in PID {pid} ({url})")
        pool = ConnectionPool.from_url(
            url,
            decode_responses=True,
            encoding="utf-8",
            max_connections=max_connections,
            socket_connect_timeout=socket_timeout,
            health_check_interval=health_check_interval,
        )
        cls._pools[alias] = pool
        cls._clients[alias] = Redis(connection_pool=pool)

    @classmethod
    async def close(cls, alias: PoolAlias | None = None) -> None:
        """Close one or all Redis pools for this process."""
        pid = os.getpid()
        if cls._pid != pid:
            log.debug("No Redis pool to close for PID %s", pid)
            return

        aliases = [alias] if alias else list(cls._pools.keys())
        for a in aliases:
            pool = cls._pools.pop(cast(PoolAlias, a), None)
            if pool:
                log.info("Closing Redis pool '%s' in PID %s", a, pid)
                await pool.disconnect()
                cls._clients.pop(cast(PoolAlias, a), None)
        if not cls._pools:
            cls._pid = None

    # ---------- access helpers ---------------------------------------------

    @classmethod
    async def get(cls, alias: PoolAlias = "queue") -> Redis:
        """Return the Redis client for the given alias after a PING."""
        client = cls._clients.get(alias)
        if client is None or cls._pid != os.getpid():
            log.error("RedisClient.get() called before setup() in this process.")
            raise RuntimeError(f"RedisClient must be set up for alias '{alias}' first.")
        try:
            await client.ping()
        except Exception as exc:
            log.error("Redis ping failed for '%s': %s", alias, exc, exc_info=True)
            raise
        return client

    @classmethod
    @asynccontextmanager
    async def connection(cls, alias: PoolAlias = "queue") -> AsyncIterator[Redis]:
        """
        Async context manager for a Redis connection.

        Usage::

            async with RedisClient.connection("events") as r:
                await r.publish("socket:events", "{}")
        """
        client = await cls.get(alias)
        yield client
