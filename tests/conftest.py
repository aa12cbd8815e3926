"""
Pytest configuration and common fixtures for Conduit tests.

Every service is exercised against the in-memory store, queue and
broadcaster; the SQL and Redis backends have their own test modules.
"""

from collections.abc import Callable
from typing import Any

import pytest

from conduit.core.logging.context import clear_job_context
from conduit.domain.models import Channel
from conduit.persistence.memory import (
    MemoryBroadcaster,
    MemoryConversationStore,
    MemoryJobQueue,
)
from conduit.schemas.core.types import ChannelProvider, ChannelType

TENANT_ID = "tenant-acme"

EVOLUTION_INSTANCE = "acme-main"
CLOUD_PHONE_NUMBER_ID = "109876543210"
IG_USER_ID = "17841400000000001"
PAGE_ID = "104000000000001"


@pytest.fixture(autouse=True)
def reset_job_context():
    clear_job_context()
    yield
    clear_job_context()


@pytest.fixture
def store() -> MemoryConversationStore:
    return MemoryConversationStore()


@pytest.fixture
def broadcaster() -> MemoryBroadcaster:
    return MemoryBroadcaster()


@pytest.fixture
def job_queue() -> MemoryJobQueue:
    return MemoryJobQueue()


@pytest.fixture
async def evolution_channel(store) -> Channel:
    return await store.create_channel(
        Channel(
            tenant_id=TENANT_ID,
            name="Atendimento",
            type=ChannelType.WHATSAPP,
            provider=ChannelProvider.EVOLUTION,
            config={"instanceName": EVOLUTION_INSTANCE},
        )
    )


@pytest.fixture
async def cloud_channel(store) -> Channel:
    return await store.create_channel(
        Channel(
            tenant_id=TENANT_ID,
            name="WhatsApp Cloud",
            type=ChannelType.WHATSAPP,
            provider=ChannelProvider.CLOUD,
            config={"phoneNumberId": CLOUD_PHONE_NUMBER_ID, "accessToken": "EAA-cloud"},
            is_active=True,
        )
    )


@pytest.fixture
async def instagram_channel(store) -> Channel:
    return await store.create_channel(
        Channel(
            tenant_id=TENANT_ID,
            name="Instagram",
            type=ChannelType.INSTAGRAM,
            config={"igUserId": IG_USER_ID, "pageAccessToken": "EAA-page"},
            is_active=True,
        )
    )


@pytest.fixture
async def messenger_channel(store) -> Channel:
    return await store.create_channel(
        Channel(
            tenant_id=TENANT_ID,
            name="Messenger",
            type=ChannelType.MESSENGER,
            config={"pageId": PAGE_ID, "pageAccessToken": "EAA-page"},
            is_active=True,
        )
    )


# ----------------------------------------------------------------------
# Raw provider payloads
# ----------------------------------------------------------------------


@pytest.fixture
def evolution_upsert() -> Callable[..., dict[str, Any]]:
    """Factory for a bridge ``messages.upsert`` webhook."""

    def build(
        message_id: str = "3EB0C767D26A1D8A",
        phone: str = "5511987654321",
        text: str | None = "Olá, preciso de ajuda",
        push_name: str | None = "Maria Silva",
        from_me: bool = False,
        message: dict[str, Any] | None = None,
        instance: str = EVOLUTION_INSTANCE,
    ) -> dict[str, Any]:
        return {
            "event": "messages.upsert",
            "instance": instance,
            "data": {
                "key": {
                    "remoteJid": f"{phone}@s.whatsapp.net",
                    "fromMe": from_me,
                    "id": message_id,
                },
                "pushName": push_name,
                "message": message if message is not None else {"conversation": text},
                "messageType": "conversation",
                "messageTimestamp": 1717000000,
            },
        }

    return build


@pytest.fixture
def evolution_event() -> Callable[..., dict[str, Any]]:
    """Factory for any other bridge webhook."""

    def build(event: str, data: Any = None, instance: str = EVOLUTION_INSTANCE) -> dict[str, Any]:
        return {"event": event, "instance": instance, "data": data}

    return build


@pytest.fixture
def cloud_webhook() -> Callable[..., dict[str, Any]]:
    """Factory for a Cloud API webhook carrying messages and/or statuses."""

    def build(
        messages: list[dict[str, Any]] | None = None,
        statuses: list[dict[str, Any]] | None = None,
        contacts: list[dict[str, Any]] | None = None,
        phone_number_id: str = CLOUD_PHONE_NUMBER_ID,
    ) -> dict[str, Any]:
        return {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "id": "WABA-1",
                    "changes": [
                        {
                            "field": "messages",
                            "value": {
                                "messaging_product": "whatsapp",
                                "metadata": {
                                    "display_phone_number": "15550001111",
                                    "phone_number_id": phone_number_id,
                                },
                                "contacts": contacts or [],
                                "messages": messages or [],
                                "statuses": statuses or [],
                            },
                        }
                    ],
                }
            ],
        }

    return build


@pytest.fixture
def graph_messaging() -> Callable[..., dict[str, Any]]:
    """Factory for an Instagram/Messenger messaging webhook."""

    def build(
        obj: str,
        recipient_id: str,
        events: list[dict[str, Any]],
        sender_id: str = "6690000000000123",
    ) -> dict[str, Any]:
        return {
            "object": obj,
            "entry": [
                {
                    "id": recipient_id,
                    "time": 1717000000000,
                    "messaging": [
                        {
                            "sender": {"id": sender_id},
                            "recipient": {"id": recipient_id},
                            "timestamp": 1717000000000,
                            **event,
                        }
                        for event in events
                    ],
                }
            ],
        }

    return build
