"""Queue-to-service wiring, run end to end on the in-memory backends."""

from unittest.mock import AsyncMock

import pytest

from conduit.domain.errors import ProviderSendError, UnrecoverableJobError
from conduit.domain.models import Campaign, Contact, Message
from conduit.messaging.evolution_client import EvolutionClient
from conduit.schemas.core.types import (
    CampaignStatus,
    MessageDirection,
    MessageStatus,
    ProviderType,
    RecipientStatus,
    SenderType,
)
from conduit.schemas.jobs import (
    CampaignStartJob,
    ChatbotJob,
    ProcessIncomingJob,
    SendMessageJob,
)
from conduit.services.contact_resolver import ContactResolver
from conduit.workers.handlers import parse_payload
from conduit.workers.job import Job
from conduit.workers.queues import (
    AI_QUEUE,
    CAMPAIGNS_QUEUE,
    MESSAGES_QUEUE,
    QUEUES,
    WEBHOOKS_QUEUE,
)
from conduit.workers.runtime import build_handlers, build_pools


@pytest.fixture
def handlers(store, broadcaster, job_queue):
    return build_handlers(store, broadcaster, job_queue)


@pytest.fixture
def pools(job_queue, handlers):
    return build_pools(job_queue, handlers)


async def drain(pools, job_queue, *queues: str) -> None:
    for _ in range(10):
        ran = 0
        for name in queues:
            await job_queue.promote_delayed(name)
            ran += await pools[name].run_until_empty()
        if ran == 0:
            return


def test_every_queue_has_a_pool(pools):
    assert set(pools) == set(QUEUES)
    assert set(pools[AI_QUEUE].handlers) == {"transcribe", "suggest", "sentiment", "chatbot"}
    assert set(pools[MESSAGES_QUEUE].handlers) == {"send", "process-incoming"}


def test_parse_payload_rejects_invalid():
    job = Job(queue=MESSAGES_QUEUE, name="send", payload={"tenantId": "t"})

    with pytest.raises(UnrecoverableJobError):
        parse_payload(job, SendMessageJob)


async def test_webhook_job_creates_message(
    pools, store, job_queue, evolution_channel, evolution_upsert
):
    job = ProcessIncomingJob(
        provider=ProviderType.WHATSAPP_UNOFFICIAL, raw_payload=evolution_upsert()
    )
    await job_queue.enqueue(WEBHOOKS_QUEUE, "process", job.to_wire())

    await drain(pools, job_queue, WEBHOOKS_QUEUE)

    contact = await store.find_contact(evolution_channel.tenant_id, phone="5511987654321")
    conversation = await store.find_conversation(
        evolution_channel.tenant_id, evolution_channel.id, contact.id
    )
    [message] = await store.list_messages(conversation.id)
    assert message.content == "Olá, preciso de ajuda"
    assert len(await job_queue.completed(WEBHOOKS_QUEUE)) == 1


async def test_process_incoming_on_messages_queue(
    pools, store, job_queue, evolution_channel, evolution_upsert
):
    job = ProcessIncomingJob(
        provider=ProviderType.WHATSAPP_UNOFFICIAL, raw_payload=evolution_upsert()
    )
    await job_queue.enqueue(MESSAGES_QUEUE, "process-incoming", job.to_wire())

    await drain(pools, job_queue, MESSAGES_QUEUE)

    assert await store.find_contact(evolution_channel.tenant_id, phone="5511987654321")


async def test_invalid_payload_is_dead_lettered_once(pools, job_queue):
    await job_queue.enqueue(WEBHOOKS_QUEUE, "process", {"provider": "telegram"})

    await drain(pools, job_queue, WEBHOOKS_QUEUE)

    [dead] = await job_queue.dead_letters(WEBHOOKS_QUEUE)
    assert dead.attempts_made == 1
    assert "Invalid webhooks:process payload" in dead.last_error


async def test_campaign_without_provider_client_fails_recipients(
    pools, store, job_queue, evolution_channel
):
    contact = await store.create_contact(
        Contact(tenant_id=evolution_channel.tenant_id, name="Ana", phone="5511900000001")
    )
    campaign = await store.create_campaign(
        Campaign(
            tenant_id=evolution_channel.tenant_id,
            channel_id=evolution_channel.id,
            name="Aviso",
            content="Olá {{name}}",
        )
    )
    await store.add_campaign_recipients(campaign.id, [contact.id])
    start = CampaignStartJob(tenant_id=campaign.tenant_id, campaign_id=campaign.id)
    await job_queue.enqueue(CAMPAIGNS_QUEUE, "start", start.to_wire())

    await drain(pools, job_queue, CAMPAIGNS_QUEUE, MESSAGES_QUEUE)

    finished = await store.get_campaign(campaign.id)
    assert finished.status == CampaignStatus.COMPLETED
    assert finished.stats.failed == 1
    [recipient] = await store.list_campaign_recipients(campaign.id)
    assert recipient.status == RecipientStatus.FAILED
    assert recipient.error_message == "Evolution client not configured"


async def test_exhausted_send_marks_message_failed(
    store, broadcaster, job_queue, evolution_channel
):
    handlers = build_handlers(store, broadcaster, job_queue)
    evolution = AsyncMock(spec=EvolutionClient)
    evolution.send_text.side_effect = ProviderSendError("bridge offline", status_code=502)
    handlers.dispatcher.evolution = evolution
    pools = build_pools(job_queue, handlers, [MESSAGES_QUEUE])

    contact = await store.create_contact(
        Contact(tenant_id=evolution_channel.tenant_id, name="Ana", phone="5511900000001")
    )
    conversation, _ = await ContactResolver(store).resolve_conversation(
        evolution_channel.tenant_id, evolution_channel.id, contact.id
    )
    message = await store.create_message(
        Message(
            tenant_id=evolution_channel.tenant_id,
            conversation_id=conversation.id,
            sender_type=SenderType.USER,
            direction=MessageDirection.OUTBOUND,
            content="Olá",
            status=MessageStatus.PENDING,
        )
    )
    send = SendMessageJob(
        tenant_id=evolution_channel.tenant_id,
        conversation_id=conversation.id,
        channel_id=evolution_channel.id,
        message_id=message.id,
        message={"content": "Olá"},
    )
    await job_queue.enqueue(MESSAGES_QUEUE, "send", send.to_wire())

    await drain(pools, job_queue, MESSAGES_QUEUE)

    assert evolution.send_text.await_count == QUEUES[MESSAGES_QUEUE].retry.attempts
    stored = await store.get_message(message.id)
    assert stored.status == MessageStatus.FAILED
    assert stored.error_message == "bridge offline"
    assert len(await job_queue.dead_letters(MESSAGES_QUEUE)) == 1


async def test_spec_shaped_incoming_job_is_pinned_to_its_channel(
    pools, store, job_queue, evolution_channel, evolution_upsert
):
    payload = {
        "channelId": evolution_channel.id,
        "channelType": "whatsapp_unofficial",
        "rawPayload": evolution_upsert(instance="renamed-instance"),
    }
    await job_queue.enqueue(WEBHOOKS_QUEUE, "process", payload)

    await drain(pools, job_queue, WEBHOOKS_QUEUE)

    contact = await store.find_contact(evolution_channel.tenant_id, phone="5511987654321")
    conversation = await store.find_conversation(
        evolution_channel.tenant_id, evolution_channel.id, contact.id
    )
    assert conversation is not None
    assert len(await job_queue.completed(WEBHOOKS_QUEUE)) == 1


def test_incoming_job_requires_channel_type():
    job = Job(queue=WEBHOOKS_QUEUE, name="process", payload={"rawPayload": {}})

    with pytest.raises(UnrecoverableJobError):
        parse_payload(job, ProcessIncomingJob)


async def test_chatbot_job_retry_keeps_one_reply(
    handlers, store, job_queue, evolution_channel
):
    contact = await store.create_contact(
        Contact(tenant_id=evolution_channel.tenant_id, name="Ana", phone="5511900000001")
    )
    conversation, _ = await ContactResolver(store).resolve_conversation(
        evolution_channel.tenant_id, evolution_channel.id, contact.id
    )
    job = Job(
        queue=AI_QUEUE,
        name="chatbot",
        payload=ChatbotJob(
            tenant_id=evolution_channel.tenant_id,
            chatbot_id="bot-1",
            conversation_id=conversation.id,
            message="oi",
        ).to_wire(),
    )

    await handlers.chatbot(job)
    await handlers.chatbot(job)

    replies = [
        m for m in await store.list_messages(conversation.id) if m.sender_type == SenderType.BOT
    ]
    assert len(replies) == 1
    assert await job_queue.size(MESSAGES_QUEUE) == 1
