"""Persistence interface for the conversation model."""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from conduit.domain.models import (
    Campaign,
    CampaignRecipient,
    Channel,
    Contact,
    Conversation,
    Message,
)
from conduit.schemas.core.types import (
    CampaignStatus,
    MessageStatus,
    ProviderType,
    RecipientStatus,
)


class IConversationStore(ABC):
    """
    Storage for channels, contacts, conversations, messages and campaigns.

    Implementations enforce these uniqueness rules and raise
    ``DuplicateEntityError`` on violation:

    - contacts: (tenant, phone) and (tenant, external id)
    - conversations: (tenant, channel, contact)
    - messages: (tenant, external id) when external id is set
    - channel lookup keys: (provider type, lookup key)
    - campaign recipients: (campaign, contact)

    Conditional updates (``*_if``) apply only when the current status is one of
    the expected ones and return None otherwise. They are the only coordination
    primitive between concurrent workers.
    """

    # Channels -----------------------------------------------------------

    @abstractmethod
    async def create_channel(self, channel: Channel) -> Channel:
        """Persist a channel and index its lookup keys."""
        ...

    @abstractmethod
    async def get_channel(self, channel_id: str) -> Channel | None: ...

    @abstractmethod
    async def find_channel_by_lookup(
        self, provider_type: ProviderType, lookup_key: str
    ) -> Channel | None:
        """Indexed lookup of the channel a webhook belongs to."""
        ...

    @abstractmethod
    async def update_channel(self, channel_id: str, **fields: Any) -> Channel | None:
        """Update fields; re-indexes lookup keys when ``config`` changes."""
        ...

    @abstractmethod
    async def delete_channel(self, channel_id: str) -> bool: ...

    # Contacts -----------------------------------------------------------

    @abstractmethod
    async def create_contact(self, contact: Contact) -> Contact: ...

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact | None: ...

    @abstractmethod
    async def find_contact(
        self,
        tenant_id: str,
        phone: str | None = None,
        external_id: str | None = None,
    ) -> Contact | None:
        """Find by phone first, then by external id."""
        ...

    # Conversations ------------------------------------------------------

    @abstractmethod
    async def create_conversation(self, conversation: Conversation) -> Conversation: ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    @abstractmethod
    async def find_conversation(
        self, tenant_id: str, channel_id: str, contact_id: str
    ) -> Conversation | None: ...

    @abstractmethod
    async def update_conversation(
        self, conversation_id: str, **fields: Any
    ) -> Conversation | None: ...

    @abstractmethod
    async def merge_conversation_metadata(
        self, conversation_id: str, values: dict[str, Any]
    ) -> Conversation | None:
        """Shallow-merge ``values`` into the conversation metadata."""
        ...

    # Messages -----------------------------------------------------------

    @abstractmethod
    async def create_message(self, message: Message) -> Message: ...

    @abstractmethod
    async def get_message(self, message_id: str) -> Message | None: ...

    @abstractmethod
    async def find_message_by_external_id(
        self, tenant_id: str, external_id: str
    ) -> Message | None: ...

    @abstractmethod
    async def update_message(self, message_id: str, **fields: Any) -> Message | None: ...

    @abstractmethod
    async def update_message_if(
        self,
        message_id: str,
        expected: Iterable[MessageStatus],
        **fields: Any,
    ) -> Message | None:
        """Update only if the message status is in ``expected``."""
        ...

    @abstractmethod
    async def merge_message_metadata(
        self, message_id: str, values: dict[str, Any]
    ) -> Message | None: ...

    @abstractmethod
    async def list_messages(
        self, conversation_id: str, limit: int = 20
    ) -> list[Message]:
        """Most recent ``limit`` messages, oldest first."""
        ...

    # Campaigns ----------------------------------------------------------

    @abstractmethod
    async def create_campaign(self, campaign: Campaign) -> Campaign: ...

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Campaign | None: ...

    @abstractmethod
    async def update_campaign(self, campaign_id: str, **fields: Any) -> Campaign | None: ...

    @abstractmethod
    async def update_campaign_if(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        **fields: Any,
    ) -> Campaign | None: ...

    @abstractmethod
    async def add_campaign_recipients(
        self, campaign_id: str, contact_ids: Iterable[str]
    ) -> list[CampaignRecipient]:
        """Add recipients, silently skipping contacts already on the campaign."""
        ...

    @abstractmethod
    async def get_campaign_recipient(
        self, recipient_id: str
    ) -> CampaignRecipient | None: ...

    @abstractmethod
    async def list_campaign_recipients(
        self, campaign_id: str, status: RecipientStatus | None = None
    ) -> list[CampaignRecipient]: ...

    @abstractmethod
    async def update_recipient_if(
        self,
        recipient_id: str,
        expected: Iterable[RecipientStatus],
        **fields: Any,
    ) -> CampaignRecipient | None: ...

    @abstractmethod
    async def count_recipients_by_status(
        self, campaign_id: str
    ) -> dict[RecipientStatus, int]: ...
