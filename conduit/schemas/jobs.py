"""
Job payloads.

Payloads travel through the broker as camelCase JSON, the wire shape the API
side already produces, and are validated into these models by the handlers.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from conduit.schemas.core.types import (
    CampaignType,
    MessageType,
    ProviderType,
)


class JobPayload(BaseModel):
    """Base for every job payload: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON dict stored in the job."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ----------------------------------------------------------------------
# webhooks / messages
# ----------------------------------------------------------------------


class ProcessIncomingJob(JobPayload):
    """
    A raw provider webhook waiting to be parsed and ingested.

    ``channelType`` names the provider. When ``channelId`` is set the events are
    attributed to that channel instead of being routed by their lookup key.
    ``provider`` is accepted as an alias of ``channelType``.
    """

    channel_id: str | None = None
    channel_type: ProviderType | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    provider: ProviderType | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    received_at: datetime | None = None

    @model_validator(mode="after")
    def _resolve_provider(self):
        provider = self.channel_type or self.provider
        if provider is None:
            raise ValueError("channelType is required")
        self.channel_type = provider
        self.provider = provider
        return self


class OutboundMessageBody(JobPayload):
    type: MessageType = MessageType.TEXT
    content: str | None = None
    media_url: str | None = None
    media_mime_type: str | None = None
    file_name: str | None = None
    template_id: str | None = None
    template_language: str | None = None
    template_params: dict[str, str] = Field(default_factory=dict)


class SendMessageJob(JobPayload):
    """Deliver one persisted outbound message through its channel."""

    tenant_id: str
    conversation_id: str
    channel_id: str
    channel_type: ProviderType | None = None
    message_id: str
    message: OutboundMessageBody
    recipient_phone: str | None = None
    recipient_external_id: str | None = None
    sender_id: str | None = None


# ----------------------------------------------------------------------
# campaigns
# ----------------------------------------------------------------------


class CampaignStartJob(JobPayload):
    tenant_id: str
    campaign_id: str
    type: CampaignType = CampaignType.BROADCAST


class CampaignContact(JobPayload):
    """Snapshot of the recipient contact taken at fan-out."""

    id: str
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    external_id: str | None = None


class CampaignSendJob(JobPayload):
    """
    Send the campaign message to a single recipient.

    ``content``, ``templateId`` and ``templateParams`` override the campaign's
    own when present. ``recipientId`` is looked up from the contact when absent.
    """

    tenant_id: str
    campaign_id: str
    channel_id: str
    channel_type: ProviderType | None = None
    contact: CampaignContact
    content: str | None = None
    template_id: str | None = None
    template_params: dict[str, str] = Field(default_factory=dict)
    recipient_id: str | None = None

    @property
    def contact_id(self) -> str:
        return self.contact.id


# ----------------------------------------------------------------------
# ai
# ----------------------------------------------------------------------


class TranscriptionJob(JobPayload):
    tenant_id: str
    message_id: str
    audio_url: str
    language: str | None = None


class SuggestionMessage(JobPayload):
    role: str
    content: str


class SuggestionJob(JobPayload):
    tenant_id: str
    conversation_id: str
    messages: list[SuggestionMessage] = Field(default_factory=list)


class SentimentJob(JobPayload):
    tenant_id: str
    message_id: str
    content: str


class ChatbotJob(JobPayload):
    tenant_id: str
    chatbot_id: str
    conversation_id: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    message_id: str | None = None
