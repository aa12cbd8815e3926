"""
Message ingest and status reconciliation.

``ingest`` persists an inbound canonical message against a resolved
conversation and publishes it; ``update_status`` applies provider receipts to
messages we sent. Both are idempotent so broker redelivery is harmless.
"""

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import DuplicateEntityError
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import CampaignStats, Conversation, Message, utc_now
from conduit.processors.status_mapper import map_provider_status
from conduit.schemas.core.events import InboundMessageEvent
from conduit.schemas.core.types import (
    MESSAGE_STATUS_RANK,
    BroadcastEvent,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    RecipientStatus,
    SenderType,
)

logger = get_logger(__name__)


def allowed_previous_statuses(target: MessageStatus) -> list[MessageStatus]:
    """
    Statuses a message may be in for ``target`` to be applied.

    Forward-only: pending -> sent -> delivered -> read. ``failed`` can be
    reached from any other status.
    """
    if target == MessageStatus.FAILED:
        return list(MESSAGE_STATUS_RANK)
    rank = MESSAGE_STATUS_RANK[target]
    return [status for status, r in MESSAGE_STATUS_RANK.items() if r < rank]


def message_payload(message: Message) -> dict:
    return message.model_dump(mode="json")


_RECIPIENT_STATUS = {
    MessageStatus.SENT: RecipientStatus.SENT,
    MessageStatus.DELIVERED: RecipientStatus.DELIVERED,
    MessageStatus.READ: RecipientStatus.READ,
    MessageStatus.FAILED: RecipientStatus.FAILED,
}

_RECIPIENT_RANK = {
    RecipientStatus.PENDING: 0,
    RecipientStatus.SENT: 1,
    RecipientStatus.DELIVERED: 2,
    RecipientStatus.READ: 3,
}


class MessageIngestService:
    def __init__(self, store: IConversationStore, broadcaster: IBroadcaster):
        self.store = store
        self.broadcaster = broadcaster

    async def ingest(
        self,
        tenant_id: str,
        conversation_id: str,
        event: InboundMessageEvent,
        conversation_created: bool,
        contact_id: str | None = None,
    ) -> Message:
        """Persist an inbound message and publish it. Returns the stored message."""
        message, _ = await self.ingest_event(
            tenant_id, conversation_id, event, conversation_created, contact_id
        )
        return message

    async def ingest_event(
        self,
        tenant_id: str,
        conversation_id: str,
        event: InboundMessageEvent,
        conversation_created: bool,
        contact_id: str | None = None,
    ) -> tuple[Message, bool]:
        """
        Like ``ingest`` but also reports whether the message is new.

        Returns:
            (message, created); created is False when the external id was
            already stored, in which case nothing is updated or broadcast
        """
        existing = await self.store.find_message_by_external_id(
            tenant_id, event.external_message_id
        )
        if existing is not None:
            logger.info(f"Message {event.external_message_id} already ingested, skipping")
            return existing, False

        candidate = Message(
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            sender_type=SenderType.CONTACT,
            sender_id=contact_id,
            direction=MessageDirection.INBOUND,
            type=event.message_type,
            content=event.content,
            media_url=event.media_url,
            media_type=event.media_mime_type,
            status=MessageStatus.DELIVERED,
            external_id=event.external_message_id,
            metadata=self._inbound_metadata(event),
        )
        try:
            message = await self.store.create_message(candidate)
        except DuplicateEntityError:
            # Another worker stored the same delivery first
            message = await self.store.find_message_by_external_id(
                tenant_id, event.external_message_id
            )
            logger.info(f"Message {event.external_message_id} ingested concurrently, skipping")
            return message, False

        conversation = await self._touch_conversation(conversation_id)

        await self.broadcaster.publish(
            BroadcastEvent.NEW_MESSAGE,
            {
                "tenantId": tenant_id,
                "conversationId": conversation_id,
                "data": message_payload(message),
            },
        )
        if conversation is not None:
            await self.broadcaster.publish(
                BroadcastEvent.NEW_CONVERSATION
                if conversation_created
                else BroadcastEvent.CONVERSATION_UPDATE,
                {
                    "tenantId": tenant_id,
                    "conversationId": conversation_id,
                    "data": conversation.model_dump(mode="json"),
                },
            )

        logger.info(
            f"Ingested {message.type.value} message {message.id} in conversation {conversation_id}"
        )
        return message, True

    @staticmethod
    def _inbound_metadata(event: InboundMessageEvent) -> dict:
        metadata = {
            "platform": event.provider.value,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.sender_name:
            metadata["senderName"] = event.sender_name
        if event.media_id:
            metadata["mediaId"] = event.media_id
        if event.file_name:
            metadata["fileName"] = event.file_name
        return metadata

    async def _touch_conversation(self, conversation_id: str) -> Conversation | None:
        """Stamp recency and reopen the conversation if it was resolved."""
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            logger.warning(f"Conversation {conversation_id} vanished during ingest")
            return None

        fields = {"last_message_at": utc_now()}
        if conversation.status == ConversationStatus.RESOLVED:
            fields["status"] = ConversationStatus.OPEN
            logger.info(f"Reopening resolved conversation {conversation_id}")
        return await self.store.update_conversation(conversation_id, **fields)

    async def update_status(
        self,
        tenant_id: str,
        external_message_id: str,
        provider_status: str | int | None,
        error_message: str | None = None,
    ) -> Message | None:
        """
        Apply a provider receipt.

        Returns:
            The updated message, or None when the message is unknown or the
            receipt would move its status backwards
        """
        target = map_provider_status(provider_status)
        message = await self.store.find_message_by_external_id(tenant_id, external_message_id)
        if message is None:
            logger.debug(f"Status {target.value} for unknown message {external_message_id}")
            return None

        fields = {"status": target}
        if target == MessageStatus.FAILED:
            fields["error_message"] = error_message or "Delivery failed"

        updated = await self.store.update_message_if(
            message.id, allowed_previous_statuses(target), **fields
        )
        if updated is None:
            logger.debug(
                f"Ignoring {target.value} for message {message.id} (already {message.status.value})"
            )
            return None

        await self.broadcaster.publish(
            BroadcastEvent.MESSAGE_UPDATE,
            {
                "tenantId": tenant_id,
                "conversationId": updated.conversation_id,
                "data": {
                    "id": updated.id,
                    "status": updated.status.value,
                    "externalId": updated.external_id,
                    "errorMessage": updated.error_message,
                },
            },
        )

        if updated.metadata.get("recipientId"):
            await self.apply_campaign_receipt(updated)
        return updated

    async def apply_campaign_receipt(self, message: Message) -> None:
        recipient_id = message.metadata["recipientId"]
        campaign_id = message.metadata.get("campaignId")
        target = _RECIPIENT_STATUS.get(message.status)
        if target is None:
            return

        fields: dict = {"status": target}
        now = utc_now()
        if target == RecipientStatus.DELIVERED:
            fields["delivered_at"] = now
        elif target == RecipientStatus.READ:
            fields["read_at"] = now
        elif target == RecipientStatus.FAILED:
            fields["error_message"] = message.error_message

        if target == RecipientStatus.FAILED:
            expected = list(_RECIPIENT_RANK)
        else:
            rank = _RECIPIENT_RANK[target]
            expected = [s for s, r in _RECIPIENT_RANK.items() if r < rank]

        if await self.store.update_recipient_if(recipient_id, expected, **fields) is None:
            return
        if campaign_id:
            await refresh_campaign_stats(self.store, self.broadcaster, campaign_id)


# Bound on re-counting while concurrent refreshes keep moving the counts
STATS_SETTLE_ROUNDS = 5


def campaign_stats(counts: dict[RecipientStatus, int]) -> CampaignStats:
    """Cumulative stats: a read recipient also counts as delivered and sent."""
    read = counts[RecipientStatus.READ]
    delivered = counts[RecipientStatus.DELIVERED] + read
    return CampaignStats(
        total=sum(counts.values()),
        sent=counts[RecipientStatus.SENT] + delivered,
        delivered=delivered,
        read=read,
        failed=counts[RecipientStatus.FAILED],
    )


async def refresh_campaign_stats(
    store: IConversationStore, broadcaster: IBroadcaster, campaign_id: str
):
    """
    Recompute campaign stats from recipient rows and publish them.

    Another refresh may land an older snapshot after ours, so the rows are
    counted again after every write and the stats rewritten until they match.
    """
    stats = campaign_stats(await store.count_recipients_by_status(campaign_id))
    updated = None
    for _ in range(STATS_SETTLE_ROUNDS):
        updated = await store.update_campaign(campaign_id, stats=stats)
        if updated is None:
            return None
        fresh = campaign_stats(await store.count_recipients_by_status(campaign_id))
        if fresh == stats:
            break
        stats = fresh

    await broadcaster.publish(
        BroadcastEvent.CAMPAIGN_UPDATE,
        {
            "tenantId": updated.tenant_id,
            "campaignId": updated.id,
            "data": {"status": updated.status.value, "stats": updated.stats.model_dump()},
        },
    )
    return updated
