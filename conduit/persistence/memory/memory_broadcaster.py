"""In-process broadcaster that records every published envelope."""

import asyncio
from typing import Any

from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.schemas.core.types import BroadcastEvent


class MemoryBroadcaster(IBroadcaster):
    """Keeps envelopes in a list and fans them out to local subscriber queues."""

    def __init__(self):
        self.events: list[dict[str, Any]] = []
        self._subscribers: list[asyncio.Queue] = []

    async def publish(self, event: BroadcastEvent, payload: dict[str, Any]) -> int:
        envelope = {"type": BroadcastEvent(event).value, **payload}
        self.events.append(envelope)
        for subscriber in self._subscribers:
            subscriber.put_nowait(envelope)
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def of_type(self, event: BroadcastEvent) -> list[dict[str, Any]]:
        return [e for e in self.events if e["type"] == event.value]
