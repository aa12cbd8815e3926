"""
SQL conversation store.

Implements ``IConversationStore`` over the SQLModel tables. Uniqueness is
enforced by the database constraints; an ``IntegrityError`` surfaces as
``DuplicateEntityError``. Conditional updates are single ``UPDATE ... WHERE
status IN (...)`` statements so concurrent workers cannot both win.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel

from conduit.database.models import (
    CampaignRecipientRow,
    CampaignRow,
    ChannelLookupKeyRow,
    ChannelRow,
    ContactRow,
    ConversationRow,
    MessageRow,
)
from conduit.database.session_manager import SessionManager
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

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)

# Domain field name -> row attribute name
_RENAMES = {"metadata": "meta"}
_REVERSE_RENAMES = {v: k for k, v in _RENAMES.items()}


def _as_utc(value: Any) -> Any:
    # SQLite hands back naive datetimes
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_entity(entity_cls: type[E], row: SQLModel | None) -> E | None:
    if row is None:
        return None
    data = {
        _REVERSE_RENAMES.get(name, name): _as_utc(getattr(row, name))
        for name in type(row).model_fields
    }
    return entity_cls.model_validate(data)


def _row_values(fields: dict[str, Any]) -> dict[str, Any]:
    values = {}
    for name, value in fields.items():
        if isinstance(value, BaseModel):
            value = value.model_dump()
        values[_RENAMES.get(name, name)] = value
    return values


def _to_row(row_cls: type[SQLModel], entity: BaseModel) -> SQLModel:
    return row_cls(**_row_values(dict(entity)))


class SqlConversationStore(IConversationStore):
    """
    Store backed by SQLAlchemy async sessions.

    Args:
        sessions: Initialized session manager
    """

    def __init__(self, sessions: SessionManager):
        self.sessions = sessions

    async def _get(self, row_cls: type[SQLModel], entity_cls: type[E], entity_id: str) -> E | None:
        async with self.sessions.get_session() as session:
            row = await session.get(row_cls, entity_id)
            return _to_entity(entity_cls, row)

    async def _insert(
        self, row: SQLModel, entity_cls: type[E], entity: str, key: dict[str, Any]
    ) -> E:
        try:
            async with self.sessions.get_session() as session:
                session.add(row)
                await session.flush()
                return _to_entity(entity_cls, row)
        except IntegrityError as e:
            logger.debug(f"Unique violation inserting {entity}: {e.orig}")
            raise DuplicateEntityError(entity, key) from e

    async def _update_where(
        self,
        row_cls: type[SQLModel],
        entity_cls: type[E],
        entity_id: str,
        fields: dict[str, Any],
        expected: Iterable[Any] | None = None,
        duplicate_entity: str | None = None,
    ) -> E | None:
        values = _row_values(fields)
        if "updated_at" in row_cls.model_fields and "updated_at" not in values:
            values["updated_at"] = utc_now()

        stmt = update(row_cls).where(row_cls.id == entity_id)
        if expected is not None:
            stmt = stmt.where(row_cls.status.in_(list(expected)))
        stmt = stmt.values(
            {getattr(row_cls, name): value for name, value in values.items()}
        ).execution_options(synchronize_session=False)

        try:
            async with self.sessions.get_session() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    return None
                row = await session.get(row_cls, entity_id, populate_existing=True)
                return _to_entity(entity_cls, row)
        except IntegrityError as e:
            raise DuplicateEntityError(
                duplicate_entity or entity_cls.__name__, {"id": entity_id, **fields}
            ) from e

    # Channels -----------------------------------------------------------

    async def create_channel(self, channel: Channel) -> Channel:
        keys = channel.lookup_keys()
        try:
            async with self.sessions.get_session() as session:
                row = _to_row(ChannelRow, channel)
                session.add(row)
                for provider_type, lookup_key in keys:
                    session.add(
                        ChannelLookupKeyRow(
                            provider_type=provider_type,
                            lookup_key=lookup_key,
                            channel_id=channel.id,
                        )
                    )
                await session.flush()
                return _to_entity(Channel, row)
        except IntegrityError as e:
            raise DuplicateEntityError(
                "ChannelLookupKey",
                {"keys": [f"{p.value}:{k}" for p, k in keys]},
            ) from e

    async def get_channel(self, channel_id: str) -> Channel | None:
        return await self._get(ChannelRow, Channel, channel_id)

    async def find_channel_by_lookup(
        self, provider_type: ProviderType, lookup_key: str
    ) -> Channel | None:
        stmt = (
            select(ChannelRow)
            .join(ChannelLookupKeyRow, ChannelLookupKeyRow.channel_id == ChannelRow.id)
            .where(
                ChannelLookupKeyRow.provider_type == provider_type,
                ChannelLookupKeyRow.lookup_key == lookup_key,
            )
        )
        async with self.sessions.get_session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_entity(Channel, row)

    async def update_channel(self, channel_id: str, **fields: Any) -> Channel | None:
        try:
            async with self.sessions.get_session() as session:
                row = await session.get(ChannelRow, channel_id)
                if row is None:
                    return None
                for name, value in _row_values(fields).items():
                    setattr(row, name, value)
                if "updated_at" not in fields:
                    row.updated_at = utc_now()

                if "config" in fields:
                    await session.execute(
                        delete(ChannelLookupKeyRow).where(
                            ChannelLookupKeyRow.channel_id == channel_id
                        )
                    )
                    for provider_type, lookup_key in _to_entity(Channel, row).lookup_keys():
                        session.add(
                            ChannelLookupKeyRow(
                                provider_type=provider_type,
                                lookup_key=lookup_key,
                                channel_id=channel_id,
                            )
                        )
                await session.flush()
                return _to_entity(Channel, row)
        except IntegrityError as e:
            raise DuplicateEntityError("ChannelLookupKey", {"channel_id": channel_id}) from e

    async def delete_channel(self, channel_id: str) -> bool:
        async with self.sessions.get_session() as session:
            await session.execute(
                delete(ChannelLookupKeyRow).where(ChannelLookupKeyRow.channel_id == channel_id)
            )
            result = await session.execute(delete(ChannelRow).where(ChannelRow.id == channel_id))
            return result.rowcount > 0

    # Contacts -----------------------------------------------------------

    async def create_contact(self, contact: Contact) -> Contact:
        key = {"tenant_id": contact.tenant_id}
        if contact.phone:
            key["phone"] = contact.phone
        if contact.external_id:
            key["external_id"] = contact.external_id
        return await self._insert(_to_row(ContactRow, contact), Contact, "Contact", key)

    async def get_contact(self, contact_id: str) -> Contact | None:
        return await self._get(ContactRow, Contact, contact_id)

    async def find_contact(
        self,
        tenant_id: str,
        phone: str | None = None,
        external_id: str | None = None,
    ) -> Contact | None:
        async with self.sessions.get_session() as session:
            row = None
            if phone:
                stmt = select(ContactRow).where(
                    ContactRow.tenant_id == tenant_id, ContactRow.phone == phone
                )
                row = (await session.execute(stmt)).scalars().first()
            if row is None and external_id:
                stmt = select(ContactRow).where(
                    ContactRow.tenant_id == tenant_id,
                    ContactRow.external_id == external_id,
                )
                row = (await session.execute(stmt)).scalars().first()
            return _to_entity(Contact, row)

    # Conversations ------------------------------------------------------

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        return await self._insert(
            _to_row(ConversationRow, conversation),
            Conversation,
            "Conversation",
            {
                "tenant_id": conversation.tenant_id,
                "channel_id": conversation.channel_id,
                "contact_id": conversation.contact_id,
            },
        )

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return await self._get(ConversationRow, Conversation, conversation_id)

    async def find_conversation(
        self, tenant_id: str, channel_id: str, contact_id: str
    ) -> Conversation | None:
        stmt = select(ConversationRow).where(
            ConversationRow.tenant_id == tenant_id,
            ConversationRow.channel_id == channel_id,
            ConversationRow.contact_id == contact_id,
        )
        async with self.sessions.get_session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_entity(Conversation, row)

    async def update_conversation(
        self, conversation_id: str, **fields: Any
    ) -> Conversation | None:
        return await self._update_where(ConversationRow, Conversation, conversation_id, fields)

    async def _merge_metadata(
        self, row_cls: type[SQLModel], entity_cls: type[E], entity_id: str, values: dict
    ) -> E | None:
        async with self.sessions.get_session() as session:
            stmt = select(row_cls).where(row_cls.id == entity_id).with_for_update()
            row = (await session.execute(stmt)).scalars().first()
            if row is None:
                return None
            row.meta = {**(row.meta or {}), **values}
            row.updated_at = utc_now()
            await session.flush()
            return _to_entity(entity_cls, row)

    async def merge_conversation_metadata(
        self, conversation_id: str, values: dict[str, Any]
    ) -> Conversation | None:
        return await self._merge_metadata(ConversationRow, Conversation, conversation_id, values)

    # Messages -----------------------------------------------------------

    async def create_message(self, message: Message) -> Message:
        return await self._insert(
            _to_row(MessageRow, message),
            Message,
            "Message",
            {"tenant_id": message.tenant_id, "external_id": message.external_id},
        )

    async def get_message(self, message_id: str) -> Message | None:
        return await self._get(MessageRow, Message, message_id)

    async def find_message_by_external_id(
        self, tenant_id: str, external_id: str
    ) -> Message | None:
        stmt = select(MessageRow).where(
            MessageRow.tenant_id == tenant_id, MessageRow.external_id == external_id
        )
        async with self.sessions.get_session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _to_entity(Message, row)

    async def update_message(self, message_id: str, **fields: Any) -> Message | None:
        return await self._update_where(
            MessageRow, Message, message_id, fields, duplicate_entity="Message"
        )

    async def update_message_if(
        self,
        message_id: str,
        expected: Iterable[MessageStatus],
        **fields: Any,
    ) -> Message | None:
        return await self._update_where(
            MessageRow, Message, message_id, fields, expected, duplicate_entity="Message"
        )

    async def merge_message_metadata(
        self, message_id: str, values: dict[str, Any]
    ) -> Message | None:
        return await self._merge_metadata(MessageRow, Message, message_id, values)

    async def list_messages(self, conversation_id: str, limit: int = 20) -> list[Message]:
        if limit <= 0:
            return []
        stmt = (
            select(MessageRow)
            .where(MessageRow.conversation_id == conversation_id)
            .order_by(MessageRow.created_at.desc())
            .limit(limit)
        )
        async with self.sessions.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_entity(Message, row) for row in reversed(rows)]

    # Campaigns ----------------------------------------------------------

    async def create_campaign(self, campaign: Campaign) -> Campaign:
        return await self._insert(
            _to_row(CampaignRow, campaign), Campaign, "Campaign", {"id": campaign.id}
        )

    async def get_campaign(self, campaign_id: str) -> Campaign | None:
        return await self._get(CampaignRow, Campaign, campaign_id)

    async def update_campaign(self, campaign_id: str, **fields: Any) -> Campaign | None:
        return await self._update_where(CampaignRow, Campaign, campaign_id, fields)

    async def update_campaign_if(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        **fields: Any,
    ) -> Campaign | None:
        return await self._update_where(CampaignRow, Campaign, campaign_id, fields, expected)

    async def add_campaign_recipients(
        self, campaign_id: str, contact_ids: Iterable[str]
    ) -> list[CampaignRecipient]:
        async with self.sessions.get_session() as session:
            stmt = select(CampaignRecipientRow.contact_id).where(
                CampaignRecipientRow.campaign_id == campaign_id
            )
            existing = set((await session.execute(stmt)).scalars().all())

            added = []
            for contact_id in contact_ids:
                if contact_id in existing:
                    continue
                existing.add(contact_id)
                recipient = CampaignRecipient(campaign_id=campaign_id, contact_id=contact_id)
                session.add(_to_row(CampaignRecipientRow, recipient))
                added.append(recipient)
            await session.flush()
            return added

    async def get_campaign_recipient(self, recipient_id: str) -> CampaignRecipient | None:
        return await self._get(CampaignRecipientRow, CampaignRecipient, recipient_id)

    async def list_campaign_recipients(
        self, campaign_id: str, status: RecipientStatus | None = None
    ) -> list[CampaignRecipient]:
        stmt = select(CampaignRecipientRow).where(
            CampaignRecipientRow.campaign_id == campaign_id
        )
        if status is not None:
            stmt = stmt.where(CampaignRecipientRow.status == status)
        async with self.sessions.get_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_entity(CampaignRecipient, row) for row in rows]

    async def update_recipient_if(
        self,
        recipient_id: str,
        expected: Iterable[RecipientStatus],
        **fields: Any,
    ) -> CampaignRecipient | None:
        return await self._update_where(
            CampaignRecipientRow, CampaignRecipient, recipient_id, fields, expected
        )

    async def count_recipients_by_status(
        self, campaign_id: str
    ) -> dict[RecipientStatus, int]:
        stmt = (
            select(CampaignRecipientRow.status, func.count())
            .where(CampaignRecipientRow.campaign_id == campaign_id)
            .group_by(CampaignRecipientRow.status)
        )
        counts = {status: 0 for status in RecipientStatus}
        async with self.sessions.get_session() as session:
            for status, count in (await session.execute(stmt)).all():
                counts[RecipientStatus(status)] = count
        return counts
