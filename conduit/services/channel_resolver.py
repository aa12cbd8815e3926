"""
Channel resolution.

Maps the provider identifier carried by a webhook (phoneNumberId,
instanceName, igUserId, pageId) to the tenant-scoped channel it belongs to.
The store keeps an index keyed by (provider type, lookup key) that is filled
when a channel is registered, so resolution is a single indexed read.
"""

from conduit.core.logging.logger import get_logger
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import Channel
from conduit.schemas.core.types import ProviderType

logger = get_logger(__name__)


class ChannelResolver:
    def __init__(self, store: IConversationStore):
        self.store = store

    async def resolve(self, provider_type: ProviderType, lookup_key: str) -> Channel | None:
        """
        Find the channel for a provider identifier.

        Returns:
            The channel, or None when nothing is registered under the key. The
            caller drops the event; the webhook itself is still acknowledged.
        """
        if not lookup_key:
            logger.warning(f"Empty lookup key for {provider_type.value}, dropping event")
            return None

        channel = await self.store.find_channel_by_lookup(provider_type, lookup_key)
        if channel is None:
            logger.warning(
                f"No channel registered for {provider_type.value} key '{lookup_key}', dropping event"
            )
        return channel

    async def register(self, channel: Channel) -> Channel:
        """Persist a channel and index its lookup keys."""
        created = await self.store.create_channel(channel)
        keys = ", ".join(f"{p.value}:{k}" for p, k in created.lookup_keys())
        logger.info(f"Registered channel {created.id} ({keys or 'no lookup keys'})")
        return created
