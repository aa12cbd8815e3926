"""
Canonical events produced by the provider adapters.

A raw webhook turns into zero or more of these. The union is discriminated by
``kind`` so events can round-trip through a job payload without losing type.
"""

from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from conduit.schemas.core.types import ConnectionState, MessageType, ProviderType


class _CanonicalEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: ProviderType = Field(..., description="Adapter that produced the event")


class InboundMessageEvent(_CanonicalEventBase):
    """A message sent by a contact to one of our channels."""

    kind: Literal["inbound_message"] = "inbound_message"
    channel_lookup_key: str = Field(
        ..., description="Provider identifier of the receiving channel"
    )
    sender_phone: str | None = Field(None, description="Contact phone (WhatsApp)")
    sender_external_id: str | None = Field(
        None, description="Contact platform id (Instagram/Messenger)"
    )
    sender_name: str | None = Field(None, description="Provider display name")
    external_message_id: str = Field(..., description="Provider message id")
    message_type: MessageType = MessageType.TEXT
    content: str | None = None
    media_url: str | None = None
    media_id: str | None = Field(None, description="Provider media handle")
    media_mime_type: str | None = None
    file_name: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _require_sender(self):
        if not self.sender_phone and not self.sender_external_id:
            raise ValueError("Inbound message requires a sender phone or external id")
        return self


class DeliveryStatusEvent(_CanonicalEventBase):
    """A provider receipt for a message we sent."""

    kind: Literal["delivery_status"] = "delivery_status"
    channel_lookup_key: str | None = None
    external_message_id: str
    provider_status: str | int = Field(
        ..., description="Raw provider status code, normalized later"
    )
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConnectionStateEvent(_CanonicalEventBase):
    """Connection lifecycle change of a channel."""

    kind: Literal["connection_state"] = "connection_state"
    channel_lookup_key: str
    state: ConnectionState
    qrcode: str | None = None


class UnhandledEvent(_CanonicalEventBase):
    """Something the adapter recognized but has nothing to do with."""

    kind: Literal["unhandled"] = "unhandled"
    reason: str = ""


CanonicalEvent = Annotated[
    InboundMessageEvent | DeliveryStatusEvent | ConnectionStateEvent | UnhandledEvent,
    Field(discriminator="kind"),
]
