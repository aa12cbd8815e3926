"""
Instagram and Messenger webhook processor.

Both products post the same Graph messaging envelope; ``object`` tells them
apart (``instagram`` vs ``page``). The channel lookup key is the recipient id,
which is the page id for Messenger and the Instagram account id for Instagram.
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
from conduit.schemas.meta.webhook_models import (
    MetaMessagingEvent,
    MetaWebhook,
)

_OBJECT_PROVIDERS = {
    "instagram": ProviderType.INSTAGRAM,
    "page": ProviderType.MESSENGER,
}

_ATTACHMENT_TYPES = {
    "image": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
}


class MetaWebhookProcessor(BaseWebhookProcessor):
    """
    Graph messaging processor.

    Args:
        provider: Default provider reported when ``object`` is not recognized
    """

    def __init__(self, provider: ProviderType = ProviderType.MESSENGER):
        super().__init__()
        self._provider = provider

    @property
    def provider(self) -> ProviderType:
        return self._provider

    def parse_events(self, payload: dict[str, Any]) -> list[CanonicalEvent]:
        webhook: MetaWebhook = self._validate(MetaWebhook, payload)

        provider = _OBJECT_PROVIDERS.get(webhook.object)
        if provider is None:
            return [
                UnhandledEvent(provider=self.provider, reason=f"object {webhook.object}")
            ]

        events: list[CanonicalEvent] = []
        for entry in webhook.entry:
            for messaging in entry.messaging:
                events.extend(
                    event
                    for event in self._parse_messaging(provider, messaging)
                    if event is not None
                )
        return events

    def _parse_messaging(
        self, provider: ProviderType, event: MetaMessagingEvent
    ) -> list[CanonicalEvent | None]:
        lookup_key = event.recipient.id

        if event.message is not None:
            if event.message.is_echo:
                return []
            return [self._inbound(provider, event)]

        if event.delivery is not None:
            if not event.delivery.mids:
                return [UnhandledEvent(provider=provider, reason="delivery watermark")]
            return [
                self._event(
                    DeliveryStatusEvent,
                    provider=provider,
                    channel_lookup_key=lookup_key,
                    external_message_id=mid,
                    provider_status="delivered",
                    timestamp=self._timestamp(event.timestamp),
                )
                for mid in event.delivery.mids
            ]

        if event.read is not None:
            if not event.read.mid:
                return [UnhandledEvent(provider=provider, reason="read watermark")]
            return [
                self._event(
                    DeliveryStatusEvent,
                    provider=provider,
                    channel_lookup_key=lookup_key,
                    external_message_id=event.read.mid,
                    provider_status="read",
                    timestamp=self._timestamp(event.timestamp),
                )
            ]

        if event.postback and event.postback.get("mid"):
            return [
                self._event(
                    InboundMessageEvent,
                    provider=provider,
                    channel_lookup_key=lookup_key,
                    sender_external_id=event.sender.id,
                    external_message_id=event.postback["mid"],
                    message_type=MessageType.TEXT,
                    content=event.postback.get("title") or event.postback.get("payload"),
                    timestamp=self._timestamp(event.timestamp),
                )
            ]

        return [UnhandledEvent(provider=provider, reason="messaging event")]

    def _inbound(
        self, provider: ProviderType, event: MetaMessagingEvent
    ) -> InboundMessageEvent | None:
        message = event.message
        message_type = MessageType.TEXT
        media_url = None

        # Only the first attachment is kept
        if message.attachments:
            attachment = message.attachments[0]
            message_type = _ATTACHMENT_TYPES.get(attachment.type, MessageType.DOCUMENT)
            media_url = attachment.payload.url if attachment.payload else None

        return self._event(
            InboundMessageEvent,
            provider=provider,
            channel_lookup_key=event.recipient.id,
            sender_external_id=event.sender.id,
            external_message_id=message.mid,
            message_type=message_type,
            content=message.text,
            media_url=media_url,
            timestamp=self._timestamp(event.timestamp),
        )
