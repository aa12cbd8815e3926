"""
Inbound pipeline: raw webhook -> canonical events -> stored state.

Runs inside the ``process`` / ``process-incoming`` jobs. Every event is
handled independently; a malformed payload is logged and acknowledged so the
provider does not keep redelivering it.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from conduit.core.config.settings import settings
from conduit.core.logging.context import set_job_context
from conduit.core.logging.logger import get_logger
from conduit.domain.errors import ParseError
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import Channel, Message, utc_now
from conduit.processors.factory import parse_webhook
from conduit.schemas.core.events import (
    ConnectionStateEvent,
    DeliveryStatusEvent,
    InboundMessageEvent,
    UnhandledEvent,
)
from conduit.schemas.core.types import (
    BroadcastEvent,
    ConnectionState,
    MessageType,
    ProviderType,
)
from conduit.schemas.jobs import SentimentJob, TranscriptionJob
from conduit.services.channel_resolver import ChannelResolver
from conduit.services.contact_resolver import ContactResolver
from conduit.services.message_ingest import MessageIngestService
from conduit.workers.job import JobPriority
from conduit.workers.queues import AI_QUEUE

logger = get_logger(__name__)

_INACTIVE_STATES = {
    ConnectionState.CLOSE,
    ConnectionState.CONNECTING,
    ConnectionState.LOGGED_OUT,
}


@dataclass
class PipelineResult:
    """What a single webhook turned into."""

    events: int = 0
    messages: list[Message] = field(default_factory=list)
    duplicates: int = 0
    statuses: int = 0
    connection_changes: int = 0
    dropped: int = 0


class InboundPipeline:
    """
    Parse, resolve and ingest one webhook.

    Args:
        store: Conversation store
        broadcaster: Real-time publisher
        queue: Job queue for auto-enrichment jobs (optional)
        auto_enrichment: Enqueue transcription/sentiment for inbound messages;
            defaults to the AI_AUTO_ENRICHMENT setting
    """

    def __init__(
        self,
        store: IConversationStore,
        broadcaster: IBroadcaster,
        queue: IJobQueue | None = None,
        auto_enrichment: bool | None = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.queue = queue
        self.auto_enrichment = (
            settings.ai_auto_enrichment if auto_enrichment is None else auto_enrichment
        )
        self.channels = ChannelResolver(store)
        self.contacts = ContactResolver(store)
        self.ingest = MessageIngestService(store, broadcaster)

    async def process(
        self,
        provider: ProviderType | str,
        raw_payload: dict[str, Any],
        headers: Mapping[str, str] | None = None,
        channel_id: str | None = None,
    ) -> PipelineResult:
        """
        Turn one webhook into stored state.

        ``channel_id`` pins every event to that channel; without it each event
        is routed by its channel lookup key.
        """
        result = PipelineResult()
        try:
            events = parse_webhook(provider, raw_payload, headers)
        except ParseError as e:
            logger.warning(f"Dropping unparseable {provider} webhook: {e.message}")
            return result

        result.events = len(events)
        pinned = None
        if channel_id is not None:
            pinned = await self.store.get_channel(channel_id)
            if pinned is None:
                logger.warning(f"Channel {channel_id} not found, dropping webhook")
                result.dropped = result.events
                return result

        for event in events:
            if isinstance(event, InboundMessageEvent):
                await self._handle_inbound(event, result, pinned)
            elif isinstance(event, DeliveryStatusEvent):
                await self._handle_status(event, result, pinned)
            elif isinstance(event, ConnectionStateEvent):
                await self._handle_connection(event, result, pinned)
            elif isinstance(event, UnhandledEvent):
                logger.debug(f"Unhandled {event.provider.value} event: {event.reason}")
        return result

    async def _handle_inbound(
        self, event: InboundMessageEvent, result: PipelineResult, pinned: Channel | None
    ) -> None:
        channel = pinned or await self.channels.resolve(event.provider, event.channel_lookup_key)
        if channel is None:
            result.dropped += 1
            return
        set_job_context(tenant_id=channel.tenant_id)

        contact = await self.contacts.resolve_contact(
            channel.tenant_id,
            phone=event.sender_phone,
            external_id=event.sender_external_id,
            name=event.sender_name,
            provider=event.provider,
        )
        conversation, created = await self.contacts.resolve_conversation(
            channel.tenant_id,
            channel.id,
            contact.id,
            metadata={"source": event.provider.value},
        )
        message, is_new = await self.ingest.ingest_event(
            channel.tenant_id, conversation.id, event, created, contact_id=contact.id
        )
        if not is_new:
            result.duplicates += 1
            return

        result.messages.append(message)
        if self.auto_enrichment:
            await self._enqueue_enrichment(message)

    async def _enqueue_enrichment(self, message: Message) -> None:
        if self.queue is None:
            return
        if message.type == MessageType.AUDIO and message.media_url:
            job = TranscriptionJob(
                tenant_id=message.tenant_id,
                message_id=message.id,
                audio_url=message.media_url,
            )
            await self.queue.enqueue(
                AI_QUEUE, "transcribe", job.to_wire(), priority=JobPriority.TRANSCRIPTION
            )
        elif message.type == MessageType.TEXT and message.content:
            job = SentimentJob(
                tenant_id=message.tenant_id,
                message_id=message.id,
                content=message.content,
            )
            await self.queue.enqueue(
                AI_QUEUE, "sentiment", job.to_wire(), priority=JobPriority.SENTIMENT
            )

    async def _handle_status(
        self, event: DeliveryStatusEvent, result: PipelineResult, pinned: Channel | None
    ) -> None:
        if pinned is None and not event.channel_lookup_key:
            logger.warning(
                f"Status for {event.external_message_id} carries no channel key, dropping"
            )
            result.dropped += 1
            return
        channel = pinned or await self.channels.resolve(event.provider, event.channel_lookup_key)
        if channel is None:
            result.dropped += 1
            return
        set_job_context(tenant_id=channel.tenant_id)

        updated = await self.ingest.update_status(
            channel.tenant_id,
            event.external_message_id,
            event.provider_status,
            event.error_message,
        )
        if updated is not None:
            result.statuses += 1

    async def _handle_connection(
        self, event: ConnectionStateEvent, result: PipelineResult, pinned: Channel | None
    ) -> None:
        channel = pinned or await self.channels.resolve(event.provider, event.channel_lookup_key)
        if channel is None:
            result.dropped += 1
            return
        set_job_context(tenant_id=channel.tenant_id)

        base = {"tenantId": channel.tenant_id, "channelId": channel.id}

        if event.state == ConnectionState.QRCODE:
            await self.broadcaster.publish(
                BroadcastEvent.CHANNEL_QRCODE, {**base, "qrcode": event.qrcode}
            )
            await self.broadcaster.publish(
                BroadcastEvent.CHANNEL_UPDATE,
                {**base, "data": {"state": event.state.value, "isActive": channel.is_active}},
            )
            result.connection_changes += 1
            return

        if event.state == ConnectionState.DELETED:
            await self.store.delete_channel(channel.id)
            logger.info(f"Channel {channel.id} deleted by provider")
            await self.broadcaster.publish(
                BroadcastEvent.CHANNEL_UPDATE,
                {**base, "data": {"state": event.state.value, "deleted": True}},
            )
            result.connection_changes += 1
            return

        if event.state == ConnectionState.OPEN:
            updated = await self.store.update_channel(
                channel.id, is_active=True, connected_at=utc_now()
            )
        elif event.state in _INACTIVE_STATES:
            updated = await self.store.update_channel(channel.id, is_active=False)
        else:
            return

        if updated is None:
            return
        logger.info(
            f"Channel {channel.id} is now {event.state.value} (active={updated.is_active})"
        )
        await self.broadcaster.publish(
            BroadcastEvent.CHANNEL_UPDATE,
            {
                **base,
                "data": {
                    "state": event.state.value,
                    "isActive": updated.is_active,
                    "connectedAt": updated.connected_at.isoformat()
                    if updated.connected_at
                    else None,
                },
            },
        )
        result.connection_changes += 1
