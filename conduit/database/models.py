"""
Database tables for the conversation model.

SQLModel tables with the uniqueness constraints the services rely on for
idempotency. Enum columns are stored as constrained strings and JSON columns
use JSONB on PostgreSQL, so the same tables run on SQLite in tests.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from conduit.schemas.core.types import (
    CampaignStatus,
    CampaignType,
    ChannelProvider,
    ChannelType,
    ConversationStatus,
    MessageDirection,
    MessageStatus,
    MessageType,
    ProviderType,
    RecipientStatus,
    SenderType,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_values(enum_cls: type[Enum]) -> list:
    """
    Extract enum values for SQLAlchemy enum configuration.

    Top-level function (not lambda) so it can be pickled.
    """
    return [member.value for member in enum_cls]


def get_enum_column(
    enum_cls: type[Enum],
    column_name: str,
    nullable: bool = False,
    index: bool = False,
):
    """
    Create a SQLAlchemy Column for enum fields.

    Args:
        enum_cls: The enum class
        column_name: Name of the CHECK constraint / enum type
        nullable: Whether the column allows NULL values
        index: Whether to index the column

    Returns:
        SQLAlchemy Column storing the enum's values
    """
    return Column(
        SAEnum(
            enum_cls,
            name=column_name,
            values_callable=enum_values,
            native_enum=False,
            length=32,
        ),
        nullable=nullable,
        index=index,
    )


def _id_column() -> Column:
    return Column(String(36), primary_key=True)


def _ref_column(nullable: bool = False, index: bool = True) -> Column:
    return Column(String(36), nullable=nullable, index=index)


def _ts_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


def _json_column(name: str | None = None) -> Column:
    if name:
        return Column(name, JSONType, nullable=False)
    return Column(JSONType, nullable=False)


# =============================================================================
# Channels
# =============================================================================


class ChannelRow(SQLModel, table=True):
    __tablename__ = "channels"

    id: str = Field(sa_column=_id_column())
    tenant_id: str = Field(sa_column=_ref_column())
    name: str = Field(default="", sa_column=Column(Text, nullable=False))
    type: ChannelType = Field(sa_column=get_enum_column(ChannelType, "channel_type_t"))
    provider: ChannelProvider | None = Field(
        default=None,
        sa_column=get_enum_column(ChannelProvider, "channel_provider_t", nullable=True),
    )
    config: dict = Field(default_factory=dict, sa_column=_json_column())
    is_active: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    connected_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    created_at: datetime = Field(sa_column=_ts_column())
    updated_at: datetime = Field(sa_column=_ts_column())


class ChannelLookupKeyRow(SQLModel, table=True):
    """Index from a provider identifier to the channel it routes to."""

    __tablename__ = "channel_lookup_keys"
    __table_args__ = (
        UniqueConstraint("provider_type", "lookup_key", name="uq_channel_lookup_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    provider_type: ProviderType = Field(
        sa_column=get_enum_column(ProviderType, "provider_type_t")
    )
    lookup_key: str = Field(sa_column=Column(String(255), nullable=False))
    channel_id: str = Field(sa_column=_ref_column())


# =============================================================================
# Contacts & Conversations
# =============================================================================


class ContactRow(SQLModel, table=True):
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_contact_tenant_phone"),
        UniqueConstraint("tenant_id", "external_id", name="uq_contact_tenant_external"),
    )

    id: str = Field(sa_column=_id_column())
    tenant_id: str = Field(sa_column=_ref_column())
    name: str = Field(sa_column=Column(Text, nullable=False))
    phone: str | None = Field(default=None, sa_column=Column(String(32), nullable=True))
    external_id: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    email: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    avatar_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    tags: list = Field(default_factory=list, sa_column=_json_column())
    custom_fields: dict = Field(default_factory=dict, sa_column=_json_column())
    created_at: datetime = Field(sa_column=_ts_column())
    updated_at: datetime = Field(sa_column=_ts_column())


class ConversationRow(SQLModel, table=True):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "channel_id", "contact_id", name="uq_conversation_channel_contact"
        ),
    )

    id: str = Field(sa_column=_id_column())
    tenant_id: str = Field(sa_column=_ref_column())
    channel_id: str = Field(sa_column=_ref_column())
    contact_id: str = Field(sa_column=_ref_column())
    status: ConversationStatus = Field(
        default=ConversationStatus.OPEN,
        sa_column=get_enum_column(ConversationStatus, "conversation_status_t"),
    )
    assignee_id: str | None = Field(default=None, sa_column=_ref_column(True, False))
    team_id: str | None = Field(default=None, sa_column=_ref_column(True, False))
    last_message_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    # "metadata" is reserved on declarative classes
    meta: dict = Field(default_factory=dict, sa_column=_json_column("metadata"))
    created_at: datetime = Field(sa_column=_ts_column())
    updated_at: datetime = Field(sa_column=_ts_column())


# =============================================================================
# Messages
# =============================================================================


class MessageRow(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_message_tenant_external"),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: str = Field(sa_column=_id_column())
    tenant_id: str = Field(sa_column=_ref_column())
    conversation_id: str = Field(sa_column=_ref_column(index=False))
    sender_type: SenderType = Field(sa_column=get_enum_column(SenderType, "sender_type_t"))
    sender_id: str | None = Field(default=None, sa_column=_ref_column(True, False))
    direction: MessageDirection = Field(
        sa_column=get_enum_column(MessageDirection, "message_direction_t")
    )
    type: MessageType = Field(
        default=MessageType.TEXT, sa_column=get_enum_column(MessageType, "message_type_t")
    )
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    media_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    media_type: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
    status: MessageStatus = Field(
        default=MessageStatus.PENDING,
        sa_column=get_enum_column(MessageStatus, "message_status_t"),
    )
    external_id: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True)
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    meta: dict = Field(default_factory=dict, sa_column=_json_column("metadata"))
    created_at: datetime = Field(sa_column=_ts_column())
    updated_at: datetime = Field(sa_column=_ts_column())


# =============================================================================
# Campaigns
# =============================================================================


class CampaignRow(SQLModel, table=True):
    __tablename__ = "campaigns"

    id: str = Field(sa_column=_id_column())
    tenant_id: str = Field(sa_column=_ref_column())
    channel_id: str = Field(sa_column=_ref_column(index=False))
    name: str = Field(sa_column=Column(Text, nullable=False))
    type: CampaignType = Field(
        default=CampaignType.BROADCAST,
        sa_column=get_enum_column(CampaignType, "campaign_type_t"),
    )
    status: CampaignStatus = Field(
        default=CampaignStatus.DRAFT,
        sa_column=get_enum_column(CampaignStatus, "campaign_status_t"),
    )
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    template_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    template_params: dict = Field(default_factory=dict, sa_column=_json_column())
    stats: dict = Field(default_factory=dict, sa_column=_json_column())
    scheduled_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    started_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    completed_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    created_at: datetime = Field(sa_column=_ts_column())
    updated_at: datetime = Field(sa_column=_ts_column())


class CampaignRecipientRow(SQLModel, table=True):
    __tablename__ = "campaign_contacts"
    __table_args__ = (
        UniqueConstraint("campaign_id", "contact_id", name="uq_campaign_contact"),
    )

    id: str = Field(sa_column=_id_column())
    campaign_id: str = Field(sa_column=_ref_column())
    contact_id: str = Field(sa_column=_ref_column(index=False))
    status: RecipientStatus = Field(
        default=RecipientStatus.PENDING,
        sa_column=get_enum_column(RecipientStatus, "campaign_contact_status_t", index=True),
    )
    message_id: str | None = Field(default=None, sa_column=_ref_column(True))
    sent_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    delivered_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    read_at: datetime | None = Field(default=None, sa_column=_ts_column(True))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
