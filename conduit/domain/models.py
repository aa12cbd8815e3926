"""
Domain entities of the conversation model.

These are the shapes every store returns. Stores hand out copies, so mutating
an entity has no effect until it goes back through a store method.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from conduit.schemas.core.types import (
    CampaignStatus,
    CampaignType,
    ChannelProvider,
    ChannelType,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    MessageType,
    ProviderType,
    RecipientStatus,
    SenderType,
)


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class _Entity(BaseModel):
    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Channel(_Entity):
    """A tenant's connection to one provider account."""

    name: str = ""
    type: ChannelType
    provider: ChannelProvider | None = None
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="phoneNumberId, instanceName, pageId, igUserId, tokens",
    )
    is_active: bool = False
    connected_at: datetime | None = None

    @property
    def provider_type(self) -> ProviderType | None:
        """Webhook/send provider of the channel; None for email."""
        if self.type == ChannelType.WHATSAPP:
            if self.provider == ChannelProvider.EVOLUTION:
                return ProviderType.WHATSAPP_UNOFFICIAL
            return ProviderType.WHATSAPP_OFFICIAL
        if self.type == ChannelType.INSTAGRAM:
            return ProviderType.INSTAGRAM
        if self.type == ChannelType.MESSENGER:
            return ProviderType.MESSENGER
        return None

    def lookup_keys(self) -> list[tuple[ProviderType, str]]:
        """
        Provider identifiers that route webhooks to this channel.

        Returns:
            (provider type, lookup key) pairs taken from the config blob
        """
        keys: list[tuple[ProviderType, str | None]] = []
        if self.type == ChannelType.WHATSAPP:
            if self.provider == ChannelProvider.EVOLUTION:
                keys.append(
                    (ProviderType.WHATSAPP_UNOFFICIAL, self.config.get("instanceName"))
                )
            else:
                keys.append(
                    (ProviderType.WHATSAPP_OFFICIAL, self.config.get("phoneNumberId"))
                )
        elif self.type == ChannelType.INSTAGRAM:
            keys.append((ProviderType.INSTAGRAM, self.config.get("igUserId")))
            keys.append((ProviderType.INSTAGRAM, self.config.get("pageId")))
        elif self.type == ChannelType.MESSENGER:
            keys.append((ProviderType.MESSENGER, self.config.get("pageId")))

        seen: set[tuple[ProviderType, str]] = set()
        result = []
        for provider_type, key in keys:
            if key and (provider_type, str(key)) not in seen:
                seen.add((provider_type, str(key)))
                result.append((provider_type, str(key)))
        return result


class Contact(_Entity):
    name: str
    phone: str | None = None
    external_id: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class Conversation(_Entity):
    channel_id: str
    contact_id: str
    status: ConversationStatus = ConversationStatus.OPEN
    assignee_id: str | None = None
    team_id: str | None = None
    last_message_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Message(_Entity):
    conversation_id: str
    sender_type: SenderType
    sender_id: str | None = None
    direction: MessageDirection
    type: MessageType = MessageType.TEXT
    content: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    status: MessageStatus = MessageStatus.PENDING
    external_id: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CampaignStats(BaseModel):
    total: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    failed: int = 0


class Campaign(_Entity):
    channel_id: str
    name: str
    type: CampaignType = CampaignType.BROADCAST
    status: CampaignStatus = CampaignStatus.DRAFT
    content: str | None = None
    template_id: str | None = None
    template_params: dict[str, Any] = Field(default_factory=dict)
    stats: CampaignStats = Field(default_factory=CampaignStats)
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class CampaignRecipient(BaseModel):
    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    id: str = Field(default_factory=new_id)
    campaign_id: str
    contact_id: str
    status: RecipientStatus = RecipientStatus.PENDING
    message_id: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    error_message: str | None = None
