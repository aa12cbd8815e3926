"""
Idempotent find-or-create for contacts and conversations.

Both operations read first and insert only when nothing was found. Concurrent
deliveries of the same sender can still race to the insert; the loser gets a
``DuplicateEntityError`` from the store's uniqueness constraint and re-reads
the winner's row, so callers never see the conflict.
"""

from typing import Any

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import DuplicateEntityError, EntityNotFoundError
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import Contact, Conversation
from conduit.schemas.core.types import ProviderType

logger = get_logger(__name__)

_PLATFORM_PREFIX = {
    ProviderType.INSTAGRAM: "IG User",
    ProviderType.MESSENGER: "FB User",
}


def default_contact_name(
    name: str | None,
    phone: str | None,
    external_id: str | None,
    provider: ProviderType | None = None,
) -> str:
    """Display name, else phone, else a platform-prefixed tail of the external id."""
    if name and name.strip():
        return name.strip()
    if phone:
        return phone
    if external_id:
        prefix = _PLATFORM_PREFIX.get(provider, "User")
        return f"{prefix} {external_id[-6:]}"
    return "Unknown"


class ContactResolver:
    def __init__(self, store: IConversationStore):
        self.store = store

    async def resolve_contact(
        self,
        tenant_id: str,
        phone: str | None = None,
        external_id: str | None = None,
        name: str | None = None,
        provider: ProviderType | None = None,
    ) -> Contact:
        """
        Find the tenant's contact by phone or external id, creating it if absent.

        Raises:
            ValueError: If neither phone nor external id is given
        """
        if not phone and not external_id:
            raise ValueError("A contact needs a phone or an external id")

        contact = await self.store.find_contact(tenant_id, phone=phone, external_id=external_id)
        if contact is not None:
            return contact

        custom_fields: dict[str, Any] = {}
        if external_id and provider in _PLATFORM_PREFIX:
            custom_fields = {"platform": provider.value, "platformId": external_id}

        candidate = Contact(
            tenant_id=tenant_id,
            name=default_contact_name(name, phone, external_id, provider),
            phone=phone,
            external_id=external_id,
            custom_fields=custom_fields,
        )
        try:
            created = await self.store.create_contact(candidate)
            logger.info(f"Created contact {created.id} ({created.name})")
            return created
        except DuplicateEntityError:
            logger.debug("Contact created concurrently, re-reading")

        contact = await self.store.find_contact(tenant_id, phone=phone, external_id=external_id)
        if contact is None:
            raise EntityNotFoundError("Contact", phone or external_id)
        return contact

    async def resolve_conversation(
        self,
        tenant_id: str,
        channel_id: str,
        contact_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Conversation, bool]:
        """
        Find or create the conversation for (tenant, channel, contact).

        Args:
            metadata: Initial metadata when the conversation is created

        Returns:
            (conversation, created) where created is True only for the caller
            whose insert won
        """
        conversation = await self.store.find_conversation(tenant_id, channel_id, contact_id)
        if conversation is not None:
            return conversation, False

        candidate = Conversation(
            tenant_id=tenant_id,
            channel_id=channel_id,
            contact_id=contact_id,
            metadata=metadata or {},
        )
        try:
            created = await self.store.create_conversation(candidate)
            logger.info(f"Created conversation {created.id} for contact {contact_id}")
            return created, True
        except DuplicateEntityError:
            logger.debug("Conversation created concurrently, re-reading")

        conversation = await self.store.find_conversation(tenant_id, channel_id, contact_id)
        if conversation is None:
            raise EntityNotFoundError("Conversation", f"{channel_id}/{contact_id}")
        return conversation, False
