"""
Outbound delivery dispatcher.

Turns a ``SendMessageJob`` into one provider API call, branching on the
channel's type and provider variant, then records the outcome on the message.

Failure handling:

- Transient provider/network errors (``ProviderSendError`` with a 5xx, 408,
  429 or no status) propagate so the worker retries per policy. When retries
  run out the worker calls ``mark_failed``.
- Permanent errors (missing config, missing address, unsupported body, other
  4xx responses) mark the message ``failed`` at once and return.
"""

from dataclasses import dataclass
from typing import Any

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import PermanentDeliveryError, ProviderSendError
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import Channel, Message
from conduit.messaging.evolution_client import EvolutionClient
from conduit.messaging.meta_client import GraphApiClient
from conduit.schemas.core.types import (
    BroadcastEvent,
    ChannelProvider,
    ChannelType,
    MessageStatus,
    MessageType,
)
from conduit.schemas.jobs import OutboundMessageBody, SendMessageJob
from conduit.services.message_ingest import MessageIngestService

logger = get_logger(__name__)

_RETRYABLE_HTTP = {408, 429}

_EVOLUTION_DEFAULT_MIME = {
    MessageType.IMAGE: "image/jpeg",
    MessageType.VIDEO: "video/mp4",
    MessageType.AUDIO: "audio/ogg",
    MessageType.DOCUMENT: "application/octet-stream",
    MessageType.STICKER: "image/webp",
}

_MEDIA_WITH_CAPTION = {MessageType.IMAGE, MessageType.VIDEO, MessageType.DOCUMENT}


@dataclass
class DeliveryResult:
    status: MessageStatus
    external_id: str | None = None
    error_message: str | None = None


def is_transient(error: ProviderSendError) -> bool:
    """Whether a provider error is worth retrying."""
    code = error.status_code
    return code is None or code >= 500 or code in _RETRYABLE_HTTP


class OutboundDispatcher:
    """
    Args:
        store: Conversation store
        broadcaster: Real-time publisher
        evolution: Evolution client (bridge channels)
        graph: Graph API client (Cloud, Instagram, Messenger channels)
    """

    def __init__(
        self,
        store: IConversationStore,
        broadcaster: IBroadcaster,
        evolution: EvolutionClient | None = None,
        graph: GraphApiClient | None = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.evolution = evolution
        self.graph = graph
        self.receipts = MessageIngestService(store, broadcaster)

    async def send(self, job: SendMessageJob) -> DeliveryResult:
        """
        Deliver one outbound message.

        Raises:
            ProviderSendError: On transient failures, to be retried
        """
        message = await self.store.get_message(job.message_id)
        if message is None:
            raise PermanentDeliveryError(f"Message {job.message_id} not found")
        if message.status != MessageStatus.PENDING:
            # Redelivered job for a message that was already handled
            logger.info(f"Message {message.id} already {message.status.value}, not resending")
            return DeliveryResult(message.status, message.external_id, message.error_message)

        try:
            channel = await self.store.get_channel(job.channel_id)
            if channel is None:
                raise PermanentDeliveryError(f"Channel {job.channel_id} not found")
            phone, external_id = await self._recipient(job)
            response_id = await self._send_via_channel(channel, job.message, phone, external_id)
        except PermanentDeliveryError as e:
            logger.warning(f"Permanent delivery failure for message {message.id}: {e.message}")
            await self.mark_failed(job, e.message)
            return DeliveryResult(MessageStatus.FAILED, error_message=e.message)
        except ProviderSendError as e:
            if is_transient(e):
                logger.warning(f"Transient send failure for message {message.id}: {e.message}")
                raise
            logger.warning(f"Provider rejected message {message.id}: {e.message}")
            await self.mark_failed(job, e.message)
            return DeliveryResult(MessageStatus.FAILED, error_message=e.message)

        updated = await self.store.update_message_if(
            message.id,
            [MessageStatus.PENDING],
            status=MessageStatus.SENT,
            external_id=response_id,
            error_message=None,
        )
        if updated is None:
            current = await self.store.get_message(message.id)
            return DeliveryResult(current.status, current.external_id, current.error_message)

        logger.info(f"Sent message {updated.id} via {channel.type.value} ({response_id})")
        await self._broadcast_update(updated)
        return DeliveryResult(MessageStatus.SENT, response_id)

    async def mark_failed(self, job: SendMessageJob, error: str) -> Message | None:
        """Record a terminal failure on the message and its campaign recipient."""
        updated = await self.store.update_message_if(
            job.message_id,
            [MessageStatus.PENDING],
            status=MessageStatus.FAILED,
            error_message=error,
        )
        if updated is None:
            return None
        await self._broadcast_update(updated)
        if updated.metadata.get("recipientId"):
            await self.receipts.apply_campaign_receipt(updated)
        return updated

    async def _broadcast_update(self, message: Message) -> None:
        await self.broadcaster.publish(
            BroadcastEvent.MESSAGE_UPDATE,
            {
                "tenantId": message.tenant_id,
                "conversationId": message.conversation_id,
                "data": {
                    "id": message.id,
                    "status": message.status.value,
                    "externalId": message.external_id,
                    "errorMessage": message.error_message,
                },
            },
        )

    async def _recipient(self, job: SendMessageJob) -> tuple[str | None, str | None]:
        phone, external_id = job.recipient_phone, job.recipient_external_id
        if phone and external_id:
            return phone, external_id
        conversation = await self.store.get_conversation(job.conversation_id)
        contact = await self.store.get_contact(conversation.contact_id) if conversation else None
        if contact is not None:
            phone = phone or contact.phone
            external_id = external_id or contact.external_id
        return phone, external_id

    async def _send_via_channel(
        self,
        channel: Channel,
        body: OutboundMessageBody,
        phone: str | None,
        external_id: str | None,
    ) -> str | None:
        if channel.type == ChannelType.WHATSAPP:
            if channel.provider == ChannelProvider.EVOLUTION:
                return await self._send_evolution(channel, body, phone)
            return await self._send_cloud(channel, body, phone)
        if channel.type == ChannelType.INSTAGRAM:
            return await self._send_instagram(channel, body, external_id)
        if channel.type == ChannelType.MESSENGER:
            return await self._send_messenger(channel, body, external_id)
        raise PermanentDeliveryError(f"Unsupported channel type: {channel.type.value}")

    # Evolution ---------------------------------------------------------

    async def _send_evolution(
        self, channel: Channel, body: OutboundMessageBody, phone: str | None
    ) -> str | None:
        instance = channel.config.get("instanceName")
        if not instance or not phone:
            raise PermanentDeliveryError("Missing Evolution instanceName or phone")
        if self.evolution is None:
            raise PermanentDeliveryError("Evolution client not configured")

        if body.type == MessageType.TEXT and body.content:
            response = await self.evolution.send_text(instance, phone, body.content)
        elif body.type in _EVOLUTION_DEFAULT_MIME and body.media_url:
            is_document = body.type == MessageType.DOCUMENT
            response = await self.evolution.send_media(
                instance,
                phone,
                media_type=body.type.value,
                media_url=body.media_url,
                mime_type=body.media_mime_type or _EVOLUTION_DEFAULT_MIME[body.type],
                caption=body.content if body.type in (MessageType.IMAGE, MessageType.VIDEO) else None,
                file_name=(body.file_name or body.content or "document") if is_document else None,
            )
        else:
            raise PermanentDeliveryError(
                f"Unsupported message body for Evolution: {body.type.value}"
            )
        return EvolutionClient.message_id(response)

    # WhatsApp Cloud ----------------------------------------------------

    async def _send_cloud(
        self, channel: Channel, body: OutboundMessageBody, phone: str | None
    ) -> str | None:
        phone_number_id = channel.config.get("phoneNumberId")
        access_token = channel.config.get("accessToken")
        if not phone_number_id or not access_token:
            raise PermanentDeliveryError("Missing phoneNumberId or accessToken")
        if not phone:
            raise PermanentDeliveryError("Missing recipient phone")
        if self.graph is None:
            raise PermanentDeliveryError("Graph API client not configured")

        payload = {"to": phone, **self._cloud_body(body)}
        response = await self.graph.send_whatsapp(phone_number_id, access_token, payload)
        return GraphApiClient.message_id(response)

    @staticmethod
    def _cloud_body(body: OutboundMessageBody) -> dict[str, Any]:
        if body.type == MessageType.TEXT and body.content:
            return {"type": "text", "text": {"body": body.content}}

        if body.type == MessageType.TEMPLATE and body.template_id:
            template: dict[str, Any] = {
                "name": body.template_id,
                "language": {"code": body.template_language or "en_US"},
            }
            if body.template_params:
                template["components"] = [
                    {
                        "type": "body",
                        "parameters": [
                            {"type": "text", "text": str(value)}
                            for value in body.template_params.values()
                        ],
                    }
                ]
            return {"type": "template", "template": template}

        if body.type in _EVOLUTION_DEFAULT_MIME and body.media_url:
            media: dict[str, Any] = {"link": body.media_url}
            if body.type in _MEDIA_WITH_CAPTION and body.content:
                media["caption"] = body.content
            if body.type == MessageType.DOCUMENT and body.file_name:
                media["filename"] = body.file_name
            return {"type": body.type.value, body.type.value: media}

        raise PermanentDeliveryError(
            f"Unsupported message body for WhatsApp Cloud: {body.type.value}"
        )

    # Instagram / Messenger ---------------------------------------------

    @staticmethod
    def _page_token(channel: Channel) -> str | None:
        return channel.config.get("pageAccessToken") or channel.config.get("accessToken")

    async def _send_instagram(
        self, channel: Channel, body: OutboundMessageBody, recipient_id: str | None
    ) -> str | None:
        access_token = self._page_token(channel)
        if not access_token or not recipient_id:
            raise PermanentDeliveryError("Missing pageAccessToken or recipientId")
        ig_user_id = channel.config.get("igUserId")
        if not ig_user_id:
            raise PermanentDeliveryError("Missing igUserId")
        if self.graph is None:
            raise PermanentDeliveryError("Graph API client not configured")

        if body.type == MessageType.TEXT and body.content:
            message = {"text": body.content}
        elif body.media_url:
            media_type = (
                body.type.value
                if body.type in (MessageType.VIDEO, MessageType.AUDIO)
                else "image"
            )
            message = {"attachment": {"type": media_type, "payload": {"url": body.media_url}}}
        else:
            raise PermanentDeliveryError(
                f"Unsupported message body for Instagram: {body.type.value}"
            )

        response = await self.graph.send_instagram(ig_user_id, access_token, recipient_id, message)
        return GraphApiClient.message_id(response)

    async def _send_messenger(
        self, channel: Channel, body: OutboundMessageBody, recipient_id: str | None
    ) -> str | None:
        access_token = self._page_token(channel)
        if not access_token or not recipient_id:
            raise PermanentDeliveryError("Missing pageAccessToken or recipientId")
        if self.graph is None:
            raise PermanentDeliveryError("Graph API client not configured")

        if body.type == MessageType.TEXT and body.content:
            message = {"text": body.content}
        elif body.media_url:
            if body.type in (MessageType.AUDIO, MessageType.VIDEO):
                media_type = body.type.value
            elif body.type == MessageType.DOCUMENT:
                media_type = "file"
            else:
                media_type = "image"
            message = {
                "attachment": {
                    "type": media_type,
                    "payload": {"url": body.media_url, "is_reusable": True},
                }
            }
        else:
            raise PermanentDeliveryError(
                f"Unsupported message body for Messenger: {body.type.value}"
            )

        response = await self.graph.send_messenger(access_token, recipient_id, message)
        return GraphApiClient.message_id(response)
