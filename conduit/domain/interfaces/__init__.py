"""Domain interfaces."""

from .broadcast_interface import BROADCAST_CHANNEL, IBroadcaster
from .model_provider_interface import IModelProvider
from .queue_interface import IJobQueue
from .store_interface import IConversationStore

__all__ = [
    "BROADCAST_CHANNEL",
    "IBroadcaster",
    "IConversationStore",
    "IJobQueue",
    "IModelProvider",
]
