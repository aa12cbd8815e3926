"""
Webhook models for the Evolution WhatsApp bridge.

Envelope: ``{event, instance, data}`` where ``data`` is an object or a list
depending on the event. Event names arrive either dotted
(``messages.upsert``) or upper snake (``MESSAGES_UPSERT``) and are
normalized to the dotted form.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _EvolutionModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EvolutionMessageKey(_EvolutionModel):
    remote_jid: str | None = Field(None, alias="remoteJid")
    from_me: bool = Field(False, alias="fromMe")
    id: str | None = None


class EvolutionMessageData(_EvolutionModel):
    """A ``messages.upsert`` item."""

    key: EvolutionMessageKey
    push_name: str | None = Field(None, alias="pushName")
    message: dict[str, Any] | None = None
    message_type: str | None = Field(None, alias="messageType")
    message_timestamp: int | str | None = Field(None, alias="messageTimestamp")


class EvolutionStatusUpdate(_EvolutionModel):
    """
    A ``messages.update`` item.

    Older bridges nest ``{key: {id}, update: {status}}``; newer ones flatten to
    ``{keyId, status}``.
    """

    key: EvolutionMessageKey | None = None
    update: dict[str, Any] | None = None
    key_id: str | None = Field(None, alias="keyId")
    status: str | int | None = None

    @property
    def message_id(self) -> str | None:
        if self.key and self.key.id:
            return self.key.id
        return self.key_id

    @property
    def status_code(self) -> str | int | None:
        if self.update and self.update.get("status") is not None:
            return self.update["status"]
        return self.status


class EvolutionConnectionData(_EvolutionModel):
    state: str | None = None
    status_reason: int | None = Field(None, alias="statusReason")


class EvolutionQrCodeData(_EvolutionModel):
    qrcode: dict[str, Any] | str | None = None

    @property
    def code(self) -> str | None:
        if isinstance(self.qrcode, dict):
            return self.qrcode.get("base64") or self.qrcode.get("code")
        return self.qrcode


class EvolutionWebhook(_EvolutionModel):
    """Top-level bridge webhook."""

    event: str
    instance: str = Field(..., min_length=1)
    data: Any = None

    @field_validator("event")
    @classmethod
    def _normalize_event(cls, v: str) -> str:
        return v.strip().lower().replace("_", ".")

    @property
    def items(self) -> list[Any]:
        """``data`` as a list, whichever shape the bridge sent."""
        if self.data is None:
            return []
        if isinstance(self.data, list):
            return self.data
        return [self.data]
