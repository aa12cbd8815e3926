"""Redis-backed job queue and broadcaster."""

from .redis_broadcaster import RedisBroadcaster
from .redis_client import RedisClient
from .redis_manager import RedisManager
from .redis_queue import RedisJobQueue

__all__ = ["RedisBroadcaster", "RedisClient", "RedisJobQueue", "RedisManager"]
