"""Tests for inbound ingest and provider status reconciliation."""

import pytest

from conduit.domain.models import Message
from conduit.schemas.core.events import InboundMessageEvent
from conduit.schemas.core.types import (
    BroadcastEvent,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    ProviderType,
    SenderType,
)
from conduit.services.contact_resolver import ContactResolver
from conduit.services.message_ingest import (
    MessageIngestService,
    allowed_previous_statuses,
)


def _event(external_id: str = "EXT-1", content: str = "oi") -> InboundMessageEvent:
    return InboundMessageEvent(
        provider=ProviderType.WHATSAPP_UNOFFICIAL,
        channel_lookup_key="acme-main",
        sender_phone="5511987654321",
        sender_name="Maria",
        external_message_id=external_id,
        content=content,
    )


@pytest.fixture
async def conversation(store, evolution_channel):
    resolver = ContactResolver(store)
    contact = await resolver.resolve_contact(evolution_channel.tenant_id, phone="5511987654321")
    conversation, _ = await resolver.resolve_conversation(
        evolution_channel.tenant_id, evolution_channel.id, contact.id
    )
    return conversation


@pytest.fixture
def ingest(store, broadcaster) -> MessageIngestService:
    return MessageIngestService(store, broadcaster)


class TestAllowedPreviousStatuses:
    def test_forward_only(self):
        assert allowed_previous_statuses(MessageStatus.READ) == [
            MessageStatus.PENDING,
            MessageStatus.SENT,
            MessageStatus.DELIVERED,
        ]
        assert allowed_previous_statuses(MessageStatus.SENT) == [MessageStatus.PENDING]
        assert allowed_previous_statuses(MessageStatus.PENDING) == []

    def test_failed_is_reachable_from_any_status(self):
        assert allowed_previous_statuses(MessageStatus.FAILED) == [
            MessageStatus.PENDING,
            MessageStatus.SENT,
            MessageStatus.DELIVERED,
            MessageStatus.READ,
        ]


class TestIngest:
    async def test_persists_and_broadcasts(self, ingest, store, broadcaster, conversation):
        message = await ingest.ingest(conversation.tenant_id, conversation.id, _event(), True)

        assert message.direction == MessageDirection.INBOUND
        assert message.sender_type == SenderType.CONTACT
        assert message.status == MessageStatus.DELIVERED
        assert message.metadata["platform"] == "whatsapp_unofficial"
        assert message.metadata["senderName"] == "Maria"

        assert [e["type"] for e in broadcaster.events] == [
            BroadcastEvent.NEW_MESSAGE.value,
            BroadcastEvent.NEW_CONVERSATION.value,
        ]
        stored = await store.get_conversation(conversation.id)
        assert stored.last_message_at is not None

    async def test_redelivery_is_idempotent(self, ingest, store, broadcaster, conversation):
        first = await ingest.ingest(conversation.tenant_id, conversation.id, _event(), True)
        second, created = await ingest.ingest_event(
            conversation.tenant_id, conversation.id, _event(), False
        )

        assert created is False
        assert second.id == first.id
        assert len(await store.list_messages(conversation.id)) == 1
        assert len(broadcaster.of_type(BroadcastEvent.NEW_MESSAGE)) == 1

    async def test_existing_conversation_broadcasts_update(self, ingest, broadcaster, conversation):
        await ingest.ingest(conversation.tenant_id, conversation.id, _event(), False)

        assert broadcaster.of_type(BroadcastEvent.CONVERSATION_UPDATE)
        assert not broadcaster.of_type(BroadcastEvent.NEW_CONVERSATION)

    async def test_reopens_resolved_conversation(self, ingest, store, conversation):
        await store.update_conversation(conversation.id, status=ConversationStatus.RESOLVED)
        before = await store.get_conversation(conversation.id)

        await ingest.ingest(conversation.tenant_id, conversation.id, _event(), False)

        after = await store.get_conversation(conversation.id)
        assert after.status == ConversationStatus.OPEN
        assert after.updated_at >= before.updated_at


class TestUpdateStatus:
    @pytest.fixture
    async def sent_message(self, store, conversation) -> Message:
        return await store.create_message(
            Message(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                sender_type=SenderType.USER,
                direction=MessageDirection.OUTBOUND,
                content="Seu pedido saiu para entrega",
                status=MessageStatus.SENT,
                external_id="OUT-1",
            )
        )

    async def test_read_before_delivered_stays_read(self, ingest, store, sent_message):
        await ingest.update_status(sent_message.tenant_id, "OUT-1", "READ")
        late = await ingest.update_status(sent_message.tenant_id, "OUT-1", "DELIVERY_ACK")

        assert late is None
        assert (await store.get_message(sent_message.id)).status == MessageStatus.READ

    async def test_numeric_codes(self, ingest, store, sent_message):
        updated = await ingest.update_status(sent_message.tenant_id, "OUT-1", 3)

        assert updated.status == MessageStatus.DELIVERED

    async def test_failure_records_error(self, ingest, broadcaster, sent_message):
        updated = await ingest.update_status(
            sent_message.tenant_id, "OUT-1", "failed", "Number not on WhatsApp"
        )

        assert updated.status == MessageStatus.FAILED
        assert updated.error_message == "Number not on WhatsApp"
        event = broadcaster.of_type(BroadcastEvent.MESSAGE_UPDATE)[-1]
        assert event["data"]["status"] == "failed"
        assert event["data"]["errorMessage"] == "Number not on WhatsApp"

    async def test_failure_after_read_is_applied(self, ingest, store, sent_message):
        await ingest.update_status(sent_message.tenant_id, "OUT-1", "READ")

        updated = await ingest.update_status(
            sent_message.tenant_id, "OUT-1", "failed", "Message expired"
        )

        assert updated.status == MessageStatus.FAILED
        assert (await store.get_message(sent_message.id)).error_message == "Message expired"

    async def test_nothing_leaves_failed(self, ingest, sent_message):
        await ingest.update_status(sent_message.tenant_id, "OUT-1", "failed")

        assert await ingest.update_status(sent_message.tenant_id, "OUT-1", "READ") is None
        assert await ingest.update_status(sent_message.tenant_id, "OUT-1", "failed") is None

    async def test_failure_without_error_text(self, ingest, sent_message):
        updated = await ingest.update_status(sent_message.tenant_id, "OUT-1", 0)

        assert updated.error_message == "Delivery failed"

    async def test_unknown_message_is_ignored(self, ingest, broadcaster, sent_message):
        assert await ingest.update_status(sent_message.tenant_id, "NOPE", "READ") is None
        assert not broadcaster.of_type(BroadcastEvent.MESSAGE_UPDATE)

    async def test_receipts_are_tenant_scoped(self, ingest, sent_message):
        assert await ingest.update_status("another-tenant", "OUT-1", "READ") is None
