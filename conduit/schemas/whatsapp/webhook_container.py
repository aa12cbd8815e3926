"""
Webhook container models for the WhatsApp Cloud API.

Structure: ``{object, entry: [{id, changes: [{field, value}]}]}`` where
``value`` carries ``metadata.phone_number_id`` plus either ``messages`` (with
``contacts``) or ``statuses``. Unknown fields are ignored so new Graph
versions do not break parsing.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CloudModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class WhatsAppMetadata(_CloudModel):
    """Business phone number that received or sent the message."""

    display_phone_number: str | None = None
    phone_number_id: str = Field(..., description="Channel lookup key")


class ContactProfile(_CloudModel):
    name: str | None = None


class WhatsAppContact(_CloudModel):
    wa_id: str = Field(..., description="Contact phone number")
    profile: ContactProfile | None = None


class WhatsAppMessage(_CloudModel):
    """
    One inbound message.

    Only the block matching ``type`` is populated (``text``, ``image``, ...).
    """

    from_: str = Field(..., alias="from", description="Sender phone number")
    id: str
    timestamp: str | None = None
    type: str = "text"

    text: dict[str, Any] | None = None
    image: dict[str, Any] | None = None
    video: dict[str, Any] | None = None
    audio: dict[str, Any] | None = None
    voice: dict[str, Any] | None = None
    document: dict[str, Any] | None = None
    sticker: dict[str, Any] | None = None
    location: dict[str, Any] | None = None
    contacts: list[dict[str, Any]] | None = None
    button: dict[str, Any] | None = None
    interactive: dict[str, Any] | None = None
    reaction: dict[str, Any] | None = None


class WhatsAppStatusError(_CloudModel):
    code: int | None = None
    title: str | None = None
    message: str | None = None
    error_data: dict[str, Any] | None = None

    @property
    def description(self) -> str:
        details = (self.error_data or {}).get("details")
        return details or self.message or self.title or f"error {self.code}"


class WhatsAppStatus(_CloudModel):
    """Receipt for a message we sent."""

    id: str
    status: str
    timestamp: str | None = None
    recipient_id: str | None = None
    errors: list[WhatsAppStatusError] | None = None


class WebhookValue(_CloudModel):
    messaging_product: str | None = None
    metadata: WhatsAppMetadata
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    statuses: list[WhatsAppStatus] = Field(default_factory=list)

    @field_validator("contacts", "messages", "statuses", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v if v is not None else []


class WebhookChange(_CloudModel):
    field: str = "messages"
    value: WebhookValue


class WebhookEntry(_CloudModel):
    id: str = Field(..., description="WhatsApp Business Account ID")
    changes: list[WebhookChange] = Field(default_factory=list)


class WhatsAppWebhook(_CloudModel):
    """Top-level Cloud API webhook."""

    object: str | None = None
    entry: list[WebhookEntry] = Field(..., min_length=1)
