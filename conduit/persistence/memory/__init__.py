"""In-memory backends for development and tests."""

from .memory_broadcaster import MemoryBroadcaster
from .memory_queue import MemoryJobQueue
from .memory_store import MemoryConversationStore

__all__ = ["MemoryBroadcaster", "MemoryConversationStore", "MemoryJobQueue"]
