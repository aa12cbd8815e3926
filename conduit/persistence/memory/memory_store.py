"""
In-memory conversation store.

Same uniqueness rules and conditional-update semantics as the SQL store, so
services behave identically against either. Each entity kind has its own
asyncio lock; entities are copied in and out.
"""

import asyncio
from collections.abc import Iterable
from typing import Any, TypeVar

from pydantic import BaseModel

from conduit.domain.errors import DuplicateEntityError
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import (
    Campaign,
    CampaignRecipient,
    Channel,
    Contact,
    Conversation,
    Message,
    utc_now,
)
from conduit.schemas.core.types import (
    CampaignStatus,
    MessageStatus,
    ProviderType,
    RecipientStatus,
)

T = TypeVar("T", bound=BaseModel)


def _copy(entity: T | None) -> T | None:
    return entity.model_copy(deep=True) if entity is not None else None


def _apply(entity: T, fields: dict[str, Any]) -> T:
    for name, value in fields.items():
        setattr(entity, name, value)
    if "updated_at" in type(entity).model_fields and "updated_at" not in fields:
        entity.updated_at = utc_now()
    return entity


class MemoryConversationStore(IConversationStore):
    """
    Dict-backed store.

    Storage Structure:
    {
        "channels": {id: Channel}, plus lookup index {(provider, key): id}
        "contacts": {id: Contact}, plus phone/external id indexes
        "conversations": {id: Conversation}, plus (tenant, channel, contact) index
        "messages": {id: Message}, plus (tenant, external id) index
        "campaigns": {id: Campaign} and {id: CampaignRecipient}
    }
    """

    def __init__(self):
        self._channels: dict[str, Channel] = {}
        self._lookup_index: dict[tuple[ProviderType, str], str] = {}

        self._contacts: dict[str, Contact] = {}
        self._contact_phone_index: dict[tuple[str, str], str] = {}
        self._contact_external_index: dict[tuple[str, str], str] = {}

        self._conversations: dict[str, Conversation] = {}
        self._conversation_index: dict[tuple[str, str, str], str] = {}

        self._messages: dict[str, Message] = {}
        self._message_external_index: dict[tuple[str, str], str] = {}

        self._campaigns: dict[str, Campaign] = {}
        self._recipients: dict[str, CampaignRecipient] = {}
        self._recipient_index: dict[tuple[str, str], str] = {}

        self._locks = {
            name: asyncio.Lock()
            for name in ("channels", "contacts", "conversations", "messages", "campaigns")
        }

    # Channels -----------------------------------------------------------

    async def create_channel(self, channel: Channel) -> Channel:
        async with self._locks["channels"]:
            keys = channel.lookup_keys()
            for key in keys:
                if key in self._lookup_index:
                    raise DuplicateEntityError(
                        "ChannelLookupKey", {"provider_type": key[0].value, "key": key[1]}
                    )
            stored = _copy(channel)
            self._channels[stored.id] = stored
            for key in keys:
                self._lookup_index[key] = stored.id
            return _copy(stored)

    async def get_channel(self, channel_id: str) -> Channel | None:
        return _copy(self._channels.get(channel_id))

    async def find_channel_by_lookup(
        self, provider_type: ProviderType, lookup_key: str
    ) -> Channel | None:
        async with self._locks["channels"]:
            channel_id = self._lookup_index.get((provider_type, lookup_key))
            return _copy(self._channels.get(channel_id)) if channel_id else None

    async def update_channel(self, channel_id: str, **fields: Any) -> Channel | None:
        async with self._locks["channels"]:
            channel = self._channels.get(channel_id)
            if channel is None:
                return None
            if "config" in fields:
                candidate = channel.model_copy(update={"config": fields["config"]})
                new_keys = candidate.lookup_keys()
                for key in new_keys:
                    owner = self._lookup_index.get(key)
                    if owner and owner != channel_id:
                        raise DuplicateEntityError(
                            "ChannelLookupKey",
                            {"provider_type": key[0].value, "key": key[1]},
                        )
                self._drop_lookup_keys(channel_id)
                for key in new_keys:
                    self._lookup_index[key] = channel_id
            return _copy(_apply(channel, fields))

    async def delete_channel(self, channel_id: str) -> bool:
        async with self._locks["channels"]:
            if self._channels.pop(channel_id, None) is None:
                return False
            self._drop_lookup_keys(channel_id)
            return True

    def _drop_lookup_keys(self, channel_id: str) -> None:
        for key in [k for k, v in self._lookup_index.items() if v == channel_id]:
            del self._lookup_index[key]

    # Contacts -----------------------------------------------------------

    async def create_contact(self, contact: Contact) -> Contact:
        async with self._locks["contacts"]:
            phone_key = (contact.tenant_id, contact.phone) if contact.phone else None
            external_key = (
                (contact.tenant_id, contact.external_id) if contact.external_id else None
            )
            if phone_key and phone_key in self._contact_phone_index:
                raise DuplicateEntityError(
                    "Contact", {"tenant_id": contact.tenant_id, "phone": contact.phone}
                )
            if external_key and external_key in self._contact_external_index:
                raise DuplicateEntityError(
                    "Contact",
                    {"tenant_id": contact.tenant_id, "external_id": contact.external_id},
                )
            stored = _copy(contact)
            self._contacts[stored.id] = stored
            if phone_key:
                self._contact_phone_index[phone_key] = stored.id
            if external_key:
                self._contact_external_index[external_key] = stored.id
            return _copy(stored)

    async def get_contact(self, contact_id: str) -> Contact | None:
        return _copy(self._contacts.get(contact_id))

    async def find_contact(
        self,
        tenant_id: str,
        phone: str | None = None,
        external_id: str | None = None,
    ) -> Contact | None:
        async with self._locks["contacts"]:
            contact_id = None
            if phone:
                contact_id = self._contact_phone_index.get((tenant_id, phone))
            if contact_id is None and external_id:
                contact_id = self._contact_external_index.get((tenant_id, external_id))
            return _copy(self._contacts.get(contact_id)) if contact_id else None

    # Conversations ------------------------------------------------------

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        async with self._locks["conversations"]:
            key = (conversation.tenant_id, conversation.channel_id, conversation.contact_id)
            if key in self._conversation_index:
                raise DuplicateEntityError(
                    "Conversation",
                    {
                        "tenant_id": key[0],
                        "channel_id": key[1],
                        "contact_id": key[2],
                    },
                )
            stored = _copy(conversation)
            self._conversations[stored.id] = stored
            self._conversation_index[key] = stored.id
            return _copy(stored)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return _copy(self._conversations.get(conversation_id))

    async def find_conversation(
        self, tenant_id: str, channel_id: str, contact_id: str
    ) -> Conversation | None:
        async with self._locks["conversations"]:
            conversation_id = self._conversation_index.get(
                (tenant_id, channel_id, contact_id)
            )
            return _copy(self._conversations.get(conversation_id)) if conversation_id else None

    async def update_conversation(
        self, conversation_id: str, **fields: Any
    ) -> Conversation | None:
        async with self._locks["conversations"]:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            return _copy(_apply(conversation, fields))

    async def merge_conversation_metadata(
        self, conversation_id: str, values: dict[str, Any]
    ) -> Conversation | None:
        async with self._locks["conversations"]:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            merged = {**conversation.metadata, **values}
            return _copy(_apply(conversation, {"metadata": merged}))

    # Messages -----------------------------------------------------------

    async def create_message(self, message: Message) -> Message:
        async with self._locks["messages"]:
            if message.id in self._messages:
                raise DuplicateEntityError("Message", {"id": message.id})
            key = (message.tenant_id, message.external_id) if message.external_id else None
            if key and key in self._message_external_index:
                raise DuplicateEntityError(
                    "Message",
                    {"tenant_id": message.tenant_id, "external_id": message.external_id},
                )
            stored = _copy(message)
            self._messages[stored.id] = stored
            if key:
                self._message_external_index[key] = stored.id
            return _copy(stored)

    async def get_message(self, message_id: str) -> Message | None:
        return _copy(self._messages.get(message_id))

    async def find_message_by_external_id(
        self, tenant_id: str, external_id: str
    ) -> Message | None:
        async with self._locks["messages"]:
            message_id = self._message_external_index.get((tenant_id, external_id))
            return _copy(self._messages.get(message_id)) if message_id else None

    async def update_message(self, message_id: str, **fields: Any) -> Message | None:
        return await self.update_message_if(message_id, list(MessageStatus), **fields)

    async def update_message_if(
        self,
        message_id: str,
        expected: Iterable[MessageStatus],
        **fields: Any,
    ) -> Message | None:
        async with self._locks["messages"]:
            message = self._messages.get(message_id)
            if message is None or message.status not in set(expected):
                return None
            external_id = fields.get("external_id")
            if external_id and external_id != message.external_id:
                key = (message.tenant_id, external_id)
                owner = self._message_external_index.get(key)
                if owner and owner != message_id:
                    raise DuplicateEntityError(
                        "Message",
                        {"tenant_id": message.tenant_id, "external_id": external_id},
                    )
                if message.external_id:
                    self._message_external_index.pop(
                        (message.tenant_id, message.external_id), None
                    )
                self._message_external_index[key] = message_id
            return _copy(_apply(message, fields))

    async def merge_message_metadata(
        self, message_id: str, values: dict[str, Any]
    ) -> Message | None:
        async with self._locks["messages"]:
            message = self._messages.get(message_id)
            if message is None:
                return None
            merged = {**message.metadata, **values}
            return _copy(_apply(message, {"metadata": merged}))

    async def list_messages(self, conversation_id: str, limit: int = 20) -> list[Message]:
        async with self._locks["messages"]:
            messages = sorted(
                (m for m in self._messages.values() if m.conversation_id == conversation_id),
                key=lambda m: m.created_at,
            )
            return [_copy(m) for m in messages[-limit:]] if limit > 0 else []

    # Campaigns ----------------------------------------------------------

    async def create_campaign(self, campaign: Campaign) -> Campaign:
        async with self._locks["campaigns"]:
            stored = _copy(campaign)
            self._campaigns[stored.id] = stored
            return _copy(stored)

    async def get_campaign(self, campaign_id: str) -> Campaign | None:
        return _copy(self._campaigns.get(campaign_id))

    async def update_campaign(self, campaign_id: str, **fields: Any) -> Campaign | None:
        return await self.update_campaign_if(campaign_id, list(CampaignStatus), **fields)

    async def update_campaign_if(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        **fields: Any,
    ) -> Campaign | None:
        async with self._locks["campaigns"]:
            campaign = self._campaigns.get(campaign_id)
            if campaign is None or campaign.status not in set(expected):
                return None
            return _copy(_apply(campaign, fields))

    async def add_campaign_recipients(
        self, campaign_id: str, contact_ids: Iterable[str]
    ) -> list[CampaignRecipient]:
        async with self._locks["campaigns"]:
            added = []
            for contact_id in contact_ids:
                key = (campaign_id, contact_id)
                if key in self._recipient_index:
                    continue
                recipient = CampaignRecipient(campaign_id=campaign_id, contact_id=contact_id)
                self._recipients[recipient.id] = recipient
                self._recipient_index[key] = recipient.id
                added.append(_copy(recipient))
            return added

    async def get_campaign_recipient(self, recipient_id: str) -> CampaignRecipient | None:
        return _copy(self._recipients.get(recipient_id))

    async def list_campaign_recipients(
        self, campaign_id: str, status: RecipientStatus | None = None
    ) -> list[CampaignRecipient]:
        async with self._locks["campaigns"]:
            return [
                _copy(r)
                for r in self._recipients.values()
                if r.campaign_id == campaign_id and (status is None or r.status == status)
            ]

    async def update_recipient_if(
        self,
        recipient_id: str,
        expected: Iterable[RecipientStatus],
        **fields: Any,
    ) -> CampaignRecipient | None:
        async with self._locks["campaigns"]:
            recipient = self._recipients.get(recipient_id)
            if recipient is None or recipient.status not in set(expected):
                return None
            return _copy(_apply(recipient, fields))

    async def count_recipients_by_status(
        self, campaign_id: str
    ) -> dict[RecipientStatus, int]:
        async with self._locks["campaigns"]:
            counts = {status: 0 for status in RecipientStatus}
            for recipient in self._recipients.values():
                if recipient.campaign_id == campaign_id:
                    counts[recipient.status] += 1
            return counts
