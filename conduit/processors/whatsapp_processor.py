"""
WhatsApp Cloud API webhook processor.

Flattens ``entry[].changes[].value`` batches into canonical events: one
inbound event per message and one delivery event per status receipt.
"""

from typing import Any

from conduit.processors.base_processor import BaseWebhookProcessor
from conduit.schemas.core.events import (
    CanonicalEvent,
    DeliveryStatusEvent,
    InboundMessageEvent,
    UnhandledEvent,
)
from conduit.schemas.core.types import MessageType, ProviderType
from conduit.schemas.whatsapp.webhook_container import (
    WebhookValue,
    WhatsAppMessage,
    WhatsAppWebhook,
)

_MEDIA_TYPES = {
    "image": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
    "voice": MessageType.AUDIO,
    "document": MessageType.DOCUMENT,
    "sticker": MessageType.STICKER,
}


class WhatsAppWebhookProcessor(BaseWebhookProcessor):
    """
    WhatsApp Business Platform (Cloud API) processor.

    The channel lookup key is ``metadata.phone_number_id``.
    """

    @property
    def provider(self) -> ProviderType:
        return ProviderType.WHATSAPP_OFFICIAL

    def parse_events(self, payload: dict[str, Any]) -> list[CanonicalEvent]:
        webhook: WhatsAppWebhook = self._validate(WhatsAppWebhook, payload)

        events: list[CanonicalEvent] = []
        for entry in webhook.entry:
            for change in entry.changes:
                if change.field != "messages":
                    events.append(
                        UnhandledEvent(
                            provider=self.provider, reason=f"field {change.field}"
                        )
                    )
                    continue
                events.extend(self._parse_value(change.value))
        return events

    def _parse_value(self, value: WebhookValue) -> list[CanonicalEvent]:
        lookup_key = value.metadata.phone_number_id
        names = {
            contact.wa_id: contact.profile.name
            for contact in value.contacts
            if contact.profile and contact.profile.name
        }

        events: list[CanonicalEvent | None] = []
        for message in value.messages:
            if message.type == "reaction":
                events.append(
                    UnhandledEvent(provider=self.provider, reason="reaction")
                )
                continue

            try:
                message_type, fields = self._extract_content(message)
            except (AttributeError, IndexError, TypeError) as e:
                self.logger.warning(f"Skipping message {message.id} with odd content: {e}")
                continue
            events.append(
                self._event(
                    InboundMessageEvent,
                    provider=self.provider,
                    channel_lookup_key=lookup_key,
                    sender_phone=message.from_,
                    sender_name=names.get(message.from_),
                    external_message_id=message.id,
                    message_type=message_type,
                    timestamp=self._timestamp(message.timestamp),
                    **fields,
                )
            )

        for status in value.statuses:
            error_message = None
            if status.errors:
                error_message = status.errors[0].description
            events.append(
                self._event(
                    DeliveryStatusEvent,
                    provider=self.provider,
                    channel_lookup_key=lookup_key,
                    external_message_id=status.id,
                    provider_status=status.status,
                    error_message=error_message,
                    timestamp=self._timestamp(status.timestamp),
                )
            )
        return [event for event in events if event is not None]

    @staticmethod
    def _extract_content(message: WhatsAppMessage) -> tuple[MessageType, dict[str, Any]]:
        if message.type == "text" and message.text:
            return MessageType.TEXT, {"content": message.text.get("body")}

        if message.type in _MEDIA_TYPES:
            media = getattr(message, message.type) or {}
            return _MEDIA_TYPES[message.type], {
                "content": media.get("caption") or media.get("filename"),
                "media_url": media.get("url") or media.get("link"),
                "media_id": media.get("id"),
                "media_mime_type": media.get("mime_type"),
                "file_name": media.get("filename"),
            }

        if message.type == "location" and message.location:
            location = message.location
            label = location.get("name") or location.get("address")
            coordinates = f"{location.get('latitude')},{location.get('longitude')}"
            return MessageType.LOCATION, {"content": label or coordinates}

        if message.type == "contacts" and message.contacts:
            name = message.contacts[0].get("name", {}).get("formatted_name")
            return MessageType.CONTACT, {"content": name}

        if message.type == "button" and message.button:
            return MessageType.TEXT, {"content": message.button.get("text")}

        if message.type == "interactive" and message.interactive:
            reply = message.interactive.get("button_reply") or message.interactive.get(
                "list_reply"
            )
            return MessageType.TEXT, {"content": (reply or {}).get("title")}

        # unsupported, order, system and anything newer
        return MessageType.TEXT, {"content": None}
