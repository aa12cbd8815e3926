"""
Redis pub/sub broadcaster.

Publishes ``{type, ...payload}`` JSON envelopes on the shared
``socket:events`` channel that the real-time gateway subscribes to.
"""

import json
import logging
from typing import Any

from redis.asyncio import Redis

from conduit.domain.interfaces.broadcast_interface import (
    BROADCAST_CHANNEL,
    IBroadcaster,
)
from conduit.schemas.core.types import BroadcastEvent

logger = logging.getLogger(__name__)


class RedisBroadcaster(IBroadcaster):
    """Best-effort publisher. Failures are logged, never raised."""

    def __init__(self, redis: Redis, channel: str = BROADCAST_CHANNEL):
        self.redis = redis
        self.channel = channel

    async def publish(self, event: BroadcastEvent, payload: dict[str, Any]) -> int:
        envelope = {"type": BroadcastEvent(event).value, **payload}
        try:
            message = json.dumps(envelope, default=str)
            count = await self.redis.publish(self.channel, message)
            logger.debug(f"Published {envelope['type']} to {count} subscriber(s)")
            return count
        except Exception as e:
            logger.error(f"Failed to publish {envelope['type']}: {e}")
            return 0
