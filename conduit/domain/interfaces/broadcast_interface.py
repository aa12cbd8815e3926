"""Real-time broadcast interface."""

from abc import ABC, abstractmethod
from typing import Any

from conduit.schemas.core.types import BroadcastEvent

BROADCAST_CHANNEL = "socket:events"


class IBroadcaster(ABC):
    """
    Publishes ``{type, ...payload}`` envelopes to real-time subscribers.

    Broadcasting is best effort: implementations log failures and return 0
    instead of raising, so a dead subscriber bus never fails a job.
    """

    @abstractmethod
    async def publish(self, event: BroadcastEvent, payload: dict[str, Any]) -> int:
        """
        Publish one event.

        Args:
            event: Event type placed in the envelope's ``type`` field
            payload: JSON-serializable event data (tenantId included)

        Returns:
            Number of subscribers that received the event
        """
        ...
