"""
Evolution bridge (unofficial WhatsApp) webhook processor.

Handles message upserts, delivery receipts and the instance lifecycle events
(connection, QR code, logout, delete). Messages we sent ourselves come back as
``fromMe`` upserts and are dropped here.
"""

from typing import Any

from pydantic import ValidationError

from conduit.processors.base_processor import BaseWebhookProcessor, E
from conduit.schemas.core.events import (
    CanonicalEvent,
    ConnectionStateEvent,
    DeliveryStatusEvent,
    InboundMessageEvent,
    UnhandledEvent,
)
from conduit.schemas.core.types import ConnectionState, MessageType, ProviderType
from conduit.schemas.evolution.webhook_models import (
    EvolutionConnectionData,
    EvolutionMessageData,
    EvolutionQrCodeData,
    EvolutionStatusUpdate,
    EvolutionWebhook,
)

_CONNECTION_STATES = {
    "open": ConnectionState.OPEN,
    "close": ConnectionState.CLOSE,
    "connecting": ConnectionState.CONNECTING,
}

_LIFECYCLE_EVENTS = {
    "instance.delete": ConnectionState.DELETED,
    "remove.instance": ConnectionState.DELETED,
    "instance.logout": ConnectionState.LOGGED_OUT,
    "logout.instance": ConnectionState.LOGGED_OUT,
}

# JID suffixes that are not one-to-one chats
_IGNORED_JID_SUFFIXES = ("@g.us", "@broadcast", "@newsletter")


class EvolutionWebhookProcessor(BaseWebhookProcessor):
    """Parses ``{event, instance, data}`` bridge webhooks."""

    @property
    def provider(self) -> ProviderType:
        return ProviderType.WHATSAPP_UNOFFICIAL

    def parse_events(self, payload: dict[str, Any]) -> list[CanonicalEvent]:
        webhook: EvolutionWebhook = self._validate(EvolutionWebhook, payload)

        if webhook.event == "messages.upsert":
            return self._parse_upserts(webhook)
        if webhook.event == "messages.update":
            return self._parse_status_updates(webhook)
        if webhook.event == "connection.update":
            return self._parse_connection(webhook)
        if webhook.event == "qrcode.updated":
            return self._parse_qrcode(webhook)
        if webhook.event in _LIFECYCLE_EVENTS:
            return [
                ConnectionStateEvent(
                    provider=self.provider,
                    channel_lookup_key=webhook.instance,
                    state=_LIFECYCLE_EVENTS[webhook.event],
                )
            ]

        return [UnhandledEvent(provider=self.provider, reason=f"event {webhook.event}")]

    # ------------------------------------------------------------------
    # messages.upsert
    # ------------------------------------------------------------------

    def _parse_upserts(self, webhook: EvolutionWebhook) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = []
        for item in webhook.items:
            try:
                data = EvolutionMessageData.model_validate(item)
            except ValidationError as e:
                self.logger.warning(f"Skipping malformed bridge message: {e}")
                continue

            if data.key.from_me:
                continue

            jid = data.key.remote_jid or ""
            if not jid or not data.key.id or jid.endswith(_IGNORED_JID_SUFFIXES):
                self.logger.debug(f"Skipping non-direct message from '{jid}'")
                continue

            try:
                message_type, fields = self._extract_content(data.message or {})
            except (AttributeError, TypeError) as e:
                self.logger.warning(f"Skipping bridge message {data.key.id} with odd content: {e}")
                continue
            event = self._event(
                InboundMessageEvent,
                provider=self.provider,
                channel_lookup_key=webhook.instance,
                sender_phone=self._phone_from_jid(jid),
                sender_name=data.push_name or None,
                external_message_id=data.key.id,
                message_type=message_type,
                timestamp=self._timestamp(data.message_timestamp),
                **fields,
            )
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _phone_from_jid(jid: str) -> str:
        """``5511999999999:12@s.whatsapp.net`` -> ``5511999999999``"""
        return jid.split("@", 1)[0].split(":", 1)[0]

    @staticmethod
    def _extract_content(message: dict[str, Any]) -> tuple[MessageType, dict[str, Any]]:
        """
        Map the bridge message object to a canonical type and its fields.

        The first recognized key wins; unknown shapes fall back to text with
        whatever plain text the bridge provided.
        """
        if "conversation" in message:
            return MessageType.TEXT, {"content": message.get("conversation")}

        extended = message.get("extendedTextMessage")
        if extended:
            return MessageType.TEXT, {"content": extended.get("text")}

        media_keys = (
            ("imageMessage", MessageType.IMAGE),
            ("videoMessage", MessageType.VIDEO),
            ("audioMessage", MessageType.AUDIO),
            ("stickerMessage", MessageType.STICKER),
        )
        for key, message_type in media_keys:
            media = message.get(key)
            if media:
                return message_type, {
                    "content": media.get("caption"),
                    "media_url": media.get("url"),
                    "media_mime_type": media.get("mimetype"),
                }

        document = message.get("documentMessage") or (
            message.get("documentWithCaptionMessage", {})
            .get("message", {})
            .get("documentMessage")
        )
        if document:
            return MessageType.DOCUMENT, {
                "content": document.get("caption") or document.get("fileName"),
                "media_url": document.get("url"),
                "media_mime_type": document.get("mimetype"),
                "file_name": document.get("fileName"),
            }

        location = message.get("locationMessage")
        if location:
            lat = location.get("degreesLatitude")
            lng = location.get("degreesLongitude")
            return MessageType.LOCATION, {
                "content": location.get("name") or f"{lat},{lng}",
            }

        contact = message.get("contactMessage")
        if contact:
            return MessageType.CONTACT, {"content": contact.get("displayName")}

        contacts = message.get("contactsArrayMessage")
        if contacts:
            return MessageType.CONTACT, {"content": contacts.get("displayName")}

        return MessageType.TEXT, {"content": None}

    # ------------------------------------------------------------------
    # messages.update
    # ------------------------------------------------------------------

    def _parse_status_updates(self, webhook: EvolutionWebhook) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = []
        for item in webhook.items:
            try:
                update = EvolutionStatusUpdate.model_validate(item)
            except ValidationError as e:
                self.logger.warning(f"Skipping malformed bridge status: {e}")
                continue

            if not update.message_id or update.status_code is None:
                continue

            event = self._event(
                DeliveryStatusEvent,
                provider=self.provider,
                channel_lookup_key=webhook.instance,
                external_message_id=update.message_id,
                provider_status=update.status_code,
            )
            if event is not None:
                events.append(event)
        return events

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def _lifecycle_data(self, webhook: EvolutionWebhook, model: type[E]) -> E:
        """First item of ``data``; lifecycle events carry a single object."""
        items = webhook.items
        return self._validate(model, items[0] if items else {})

    def _parse_connection(self, webhook: EvolutionWebhook) -> list[CanonicalEvent]:
        data = self._lifecycle_data(webhook, EvolutionConnectionData)
        state = _CONNECTION_STATES.get((data.state or "").lower())
        if state is None:
            return [
                UnhandledEvent(
                    provider=self.provider, reason=f"connection state {data.state}"
                )
            ]
        event = self._event(
            ConnectionStateEvent,
            provider=self.provider,
            channel_lookup_key=webhook.instance,
            state=state,
        )
        return [event] if event is not None else []

    def _parse_qrcode(self, webhook: EvolutionWebhook) -> list[CanonicalEvent]:
        data = self._lifecycle_data(webhook, EvolutionQrCodeData)
        event = self._event(
            ConnectionStateEvent,
            provider=self.provider,
            channel_lookup_key=webhook.instance,
            state=ConnectionState.QRCODE,
            qrcode=data.code,
        )
        return [event] if event is not None else []
