"""End-to-end tests of webhook -> canonical events -> stored state."""

import pytest

from conduit.domain.models import Contact, Conversation, Message
from conduit.schemas.core.types import (
    BroadcastEvent,
    MessageDirection,
    MessageStatus,
    ProviderType,
    SenderType,
)
from conduit.services.inbound_pipeline import InboundPipeline
from conduit.workers.queues import AI_QUEUE

BRIDGE = ProviderType.WHATSAPP_UNOFFICIAL


@pytest.fixture
def pipeline(store, broadcaster, job_queue) -> InboundPipeline:
    return InboundPipeline(store, broadcaster, job_queue, auto_enrichment=False)


class TestBridgeScenarios:
    async def test_first_message_creates_contact_conversation_and_message(
        self, pipeline, store, broadcaster, evolution_channel, evolution_upsert
    ):
        result = await pipeline.process(BRIDGE, evolution_upsert())

        assert len(result.messages) == 1
        message = result.messages[0]
        assert message.tenant_id == evolution_channel.tenant_id
        assert message.content == "Olá, preciso de ajuda"

        contact = await store.find_contact(evolution_channel.tenant_id, phone="5511987654321")
        assert contact.name == "Maria Silva"
        conversation = await store.find_conversation(
            evolution_channel.tenant_id, evolution_channel.id, contact.id
        )
        assert conversation.id == message.conversation_id
        assert conversation.metadata == {"source": "whatsapp_unofficial"}

        assert broadcaster.of_type(BroadcastEvent.NEW_MESSAGE)
        assert broadcaster.of_type(BroadcastEvent.NEW_CONVERSATION)

    async def test_from_me_yields_nothing(
        self, pipeline, store, broadcaster, evolution_channel, evolution_upsert
    ):
        result = await pipeline.process(BRIDGE, evolution_upsert(from_me=True))

        assert result.events == 0
        assert result.messages == []
        assert broadcaster.events == []
        assert await store.find_contact(evolution_channel.tenant_id, phone="5511987654321") is None

    async def test_connection_open_activates_channel(
        self, pipeline, store, broadcaster, evolution_channel, evolution_event
    ):
        assert evolution_channel.is_active is False

        await pipeline.process(BRIDGE, evolution_event("connection.update", {"state": "open"}))

        channel = await store.get_channel(evolution_channel.id)
        assert channel.is_active is True
        assert channel.connected_at is not None
        update = broadcaster.of_type(BroadcastEvent.CHANNEL_UPDATE)[-1]
        assert update["channelId"] == channel.id
        assert update["data"]["isActive"] is True


class TestInboundHandling:
    async def test_duplicate_webhook_is_counted_not_stored(
        self, pipeline, store, evolution_channel, evolution_upsert
    ):
        first = await pipeline.process(BRIDGE, evolution_upsert())
        second = await pipeline.process(BRIDGE, evolution_upsert())

        assert second.duplicates == 1
        assert second.messages == []
        assert len(await store.list_messages(first.messages[0].conversation_id)) == 1

    async def test_second_message_reuses_conversation(
        self, pipeline, evolution_channel, evolution_upsert
    ):
        first = await pipeline.process(BRIDGE, evolution_upsert(message_id="M1"))
        second = await pipeline.process(BRIDGE, evolution_upsert(message_id="M2"))

        assert first.messages[0].conversation_id == second.messages[0].conversation_id

    async def test_unknown_channel_is_dropped(self, pipeline, store, evolution_upsert):
        result = await pipeline.process(BRIDGE, evolution_upsert(instance="unknown"))

        assert result.dropped == 1
        assert result.messages == []

    async def test_malformed_payload_is_a_no_op(self, pipeline, broadcaster):
        result = await pipeline.process(BRIDGE, {"nothing": "here"})

        assert result.events == 0
        assert broadcaster.events == []

    async def test_malformed_item_does_not_block_valid_ones(
        self, pipeline, evolution_channel, evolution_upsert
    ):
        broken = evolution_upsert(message_id="BROKEN")["data"]
        broken["key"]["remoteJid"] = "@s.whatsapp.net"
        late = evolution_upsert(message_id="LATE", phone="5511900000002")["data"]
        late["messageTimestamp"] = 10**20
        payload = {**evolution_upsert(), "data": [broken, evolution_upsert()["data"], late]}

        result = await pipeline.process(BRIDGE, payload)

        assert result.events == 2
        assert [m.external_id for m in result.messages] == ["3EB0C767D26A1D8A", "LATE"]

    async def test_instagram_contact_gets_platform_name(
        self, pipeline, store, instagram_channel, graph_messaging
    ):
        payload = graph_messaging(
            "instagram",
            instagram_channel.config["igUserId"],
            [{"message": {"mid": "ig-1", "text": "quanto custa?"}}],
            sender_id="6690000000123456",
        )

        result = await pipeline.process(ProviderType.INSTAGRAM, payload)

        contact = await store.find_contact(
            instagram_channel.tenant_id, external_id="6690000000123456"
        )
        assert contact.name == "IG User 123456"
        assert result.messages[0].content == "quanto custa?"


class TestAutoEnrichment:
    async def test_text_enqueues_sentiment(
        self, store, broadcaster, job_queue, evolution_channel, evolution_upsert
    ):
        pipeline = InboundPipeline(store, broadcaster, job_queue, auto_enrichment=True)

        result = await pipeline.process(BRIDGE, evolution_upsert())

        jobs = await job_queue.pending_jobs(AI_QUEUE)
        assert [job.name for job in jobs] == ["sentiment"]
        assert jobs[0].payload["messageId"] == result.messages[0].id

    async def test_audio_enqueues_transcription(
        self, store, broadcaster, job_queue, evolution_channel, evolution_upsert
    ):
        pipeline = InboundPipeline(store, broadcaster, job_queue, auto_enrichment=True)
        message = {"audioMessage": {"url": "https://mmg/voice.ogg", "mimetype": "audio/ogg"}}

        await pipeline.process(BRIDGE, evolution_upsert(message=message))

        jobs = await job_queue.pending_jobs(AI_QUEUE)
        assert [job.name for job in jobs] == ["transcribe"]
        assert jobs[0].payload["audioUrl"] == "https://mmg/voice.ogg"

    async def test_disabled_enqueues_nothing(
        self, pipeline, job_queue, evolution_channel, evolution_upsert
    ):
        await pipeline.process(BRIDGE, evolution_upsert())

        assert await job_queue.size(AI_QUEUE) == 0


class TestStatusesAndLifecycle:
    @pytest.fixture
    async def outbound(self, store, evolution_channel) -> Message:
        contact = await store.create_contact(
            Contact(
                tenant_id=evolution_channel.tenant_id, name="Ana", phone="5511900000000"
            )
        )
        conversation = await store.create_conversation(
            Conversation(
                tenant_id=evolution_channel.tenant_id,
                channel_id=evolution_channel.id,
                contact_id=contact.id,
            )
        )
        return await store.create_message(
            Message(
                tenant_id=evolution_channel.tenant_id,
                conversation_id=conversation.id,
                sender_type=SenderType.USER,
                direction=MessageDirection.OUTBOUND,
                content="Olá!",
                status=MessageStatus.SENT,
                external_id="BAE5OUT",
            )
        )

    async def test_bridge_receipt_updates_message(
        self, pipeline, store, outbound, evolution_event
    ):
        payload = evolution_event(
            "messages.update", {"key": {"id": "BAE5OUT"}, "update": {"status": "DELIVERY_ACK"}}
        )

        result = await pipeline.process(BRIDGE, payload)

        assert result.statuses == 1
        assert (await store.get_message(outbound.id)).status == MessageStatus.DELIVERED

    async def test_qrcode_is_broadcast(self, pipeline, broadcaster, evolution_channel, evolution_event):
        await pipeline.process(
            BRIDGE, evolution_event("qrcode.updated", {"qrcode": {"base64": "QR"}})
        )

        qrcode = broadcaster.of_type(BroadcastEvent.CHANNEL_QRCODE)[0]
        assert qrcode["qrcode"] == "QR"
        assert qrcode["channelId"] == evolution_channel.id

    async def test_logout_deactivates(self, pipeline, store, evolution_channel, evolution_event):
        await store.update_channel(evolution_channel.id, is_active=True)

        await pipeline.process(BRIDGE, evolution_event("instance.logout"))

        assert (await store.get_channel(evolution_channel.id)).is_active is False

    async def test_delete_removes_channel(
        self, pipeline, store, broadcaster, evolution_channel, evolution_event
    ):
        await pipeline.process(BRIDGE, evolution_event("instance.delete"))

        assert await store.get_channel(evolution_channel.id) is None
        assert broadcaster.of_type(BroadcastEvent.CHANNEL_UPDATE)[-1]["data"]["deleted"] is True
