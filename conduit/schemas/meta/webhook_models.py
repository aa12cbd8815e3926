"""
Webhook models for Instagram and Messenger.

Both products share the Graph messaging envelope:
``{object: "instagram"|"page", entry: [{id, messaging: [...]}]}``.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _MetaModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MetaParticipant(_MetaModel):
    id: str


class MetaAttachmentPayload(_MetaModel):
    url: str | None = None


class MetaAttachment(_MetaModel):
    type: str = "file"
    payload: MetaAttachmentPayload | None = None


class MetaMessage(_MetaModel):
    mid: str
    text: str | None = None
    attachments: list[MetaAttachment] = Field(default_factory=list)
    is_echo: bool = False

    @field_validator("attachments", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v if v is not None else []


class MetaDelivery(_MetaModel):
    mids: list[str] = Field(default_factory=list)
    watermark: int | None = None


class MetaRead(_MetaModel):
    mid: str | None = None
    watermark: int | None = None


class MetaMessagingEvent(_MetaModel):
    sender: MetaParticipant
    recipient: MetaParticipant
    timestamp: int | None = None
    message: MetaMessage | None = None
    delivery: MetaDelivery | None = None
    read: MetaRead | None = None
    postback: dict | None = None


class MetaEntry(_MetaModel):
    id: str = Field(..., description="Page id or Instagram account id")
    time: int | None = None
    messaging: list[MetaMessagingEvent] = Field(default_factory=list)

    @field_validator("messaging", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v if v is not None else []


class MetaWebhook(_MetaModel):
    object: str
    entry: list[MetaEntry] = Field(default_factory=list)
