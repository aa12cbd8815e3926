"""
Campaign orchestrator.

State machine::

    draft -> scheduled -> running -> completed
                 \\          |  ^
                  \\         v  |
                   `----> paused      (any non-terminal state -> cancelled)

``start`` fans out one ``send-message`` job per pending recipient. Each
``send-message`` claims its recipient with a conditional update before doing
anything else, so duplicate or redelivered jobs never send twice. Stats are
recomputed from recipient rows after every change and the campaign completes
exactly when no recipient is pending.
"""

from datetime import datetime, timedelta
from uuid import NAMESPACE_URL, uuid5

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import (
    DuplicateEntityError,
    EntityNotFoundError,
    InvalidTransitionError,
)
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import (
    Campaign,
    CampaignRecipient,
    CampaignStats,
    Message,
    utc_now,
)
from conduit.schemas.core.types import (
    BroadcastEvent,
    CampaignStatus,
    MessageDirection,
    MessageStatus,
    MessageType,
    RecipientStatus,
    SenderType,
)
from conduit.schemas.jobs import (
    CampaignContact,
    CampaignSendJob,
    CampaignStartJob,
    OutboundMessageBody,
    SendMessageJob,
)
from conduit.services.contact_resolver import ContactResolver
from conduit.services.message_ingest import (
    campaign_stats,
    message_payload,
    refresh_campaign_stats,
)
from conduit.workers.queues import CAMPAIGNS_QUEUE, MESSAGES_QUEUE

from .template import build_contact_context, interpolate

logger = get_logger(__name__)

_STARTABLE = [CampaignStatus.DRAFT, CampaignStatus.SCHEDULED]
_CANCELLABLE = [
    CampaignStatus.DRAFT,
    CampaignStatus.SCHEDULED,
    CampaignStatus.RUNNING,
    CampaignStatus.PAUSED,
]


class CampaignOrchestrator:
    """
    Args:
        store: Conversation store
        broadcaster: Real-time publisher
        queue: Job queue for ``start``, ``send-message`` and ``send`` jobs
    """

    def __init__(
        self,
        store: IConversationStore,
        broadcaster: IBroadcaster,
        queue: IJobQueue,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.queue = queue
        self.contacts = ContactResolver(store)

    async def _require(self, campaign_id: str) -> Campaign:
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise EntityNotFoundError("Campaign", campaign_id)
        return campaign

    async def _publish(self, campaign: Campaign) -> None:
        await self.broadcaster.publish(
            BroadcastEvent.CAMPAIGN_UPDATE,
            {
                "tenantId": campaign.tenant_id,
                "campaignId": campaign.id,
                "data": {
                    "status": campaign.status.value,
                    "stats": campaign.stats.model_dump(),
                },
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def add_recipients(
        self, campaign_id: str, contact_ids: list[str]
    ) -> list[CampaignRecipient]:
        """Attach contacts to a campaign that has not started yet."""
        campaign = await self._require(campaign_id)
        if campaign.status not in _STARTABLE:
            raise InvalidTransitionError(
                f"Cannot add recipients to a {campaign.status.value} campaign"
            )
        return await self.store.add_campaign_recipients(campaign_id, contact_ids)

    async def schedule(
        self, campaign_id: str, scheduled_at: datetime | None = None
    ) -> Campaign:
        """
        Queue the ``start`` job.

        A future ``scheduled_at`` moves the campaign to ``scheduled`` and delays
        the job by ``max(0, scheduled_at - now)``; otherwise it starts at once.
        """
        campaign = await self._require(campaign_id)
        if campaign.status not in _STARTABLE:
            raise InvalidTransitionError(f"Cannot schedule a {campaign.status.value} campaign")

        when = scheduled_at or campaign.scheduled_at
        delay = max(0.0, (when - utc_now()).total_seconds()) if when else 0.0

        if delay > 0:
            updated = await self.store.update_campaign_if(
                campaign_id,
                _STARTABLE,
                status=CampaignStatus.SCHEDULED,
                scheduled_at=when,
            )
            if updated is None:
                raise InvalidTransitionError(f"Campaign {campaign_id} changed state")
            campaign = updated
            await self._publish(campaign)

        job = CampaignStartJob(
            tenant_id=campaign.tenant_id, campaign_id=campaign.id, type=campaign.type
        )
        await self.queue.enqueue(CAMPAIGNS_QUEUE, "start", job.to_wire(), delay=delay)
        logger.info(
            f"Campaign {campaign_id} start queued"
            + (f" in {timedelta(seconds=int(delay))}" if delay else "")
        )
        return campaign

    async def start(self, campaign_id: str) -> Campaign | None:
        """
        Move the campaign to ``running`` and fan out its pending recipients.

        Zero recipients completes the campaign immediately with total 0. A
        redelivered start of a running campaign fans out again; recipients
        already claimed are skipped by ``send_message``.
        """
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            logger.warning(f"Campaign {campaign_id} not found, skipping start")
            return None

        if campaign.status not in _STARTABLE and campaign.status != CampaignStatus.RUNNING:
            logger.info(f"Campaign {campaign_id} is {campaign.status.value}, not starting")
            return campaign

        recipients = await self.store.list_campaign_recipients(campaign_id)
        now = utc_now()

        if not recipients:
            completed = await self.store.update_campaign_if(
                campaign_id,
                _STARTABLE + [CampaignStatus.RUNNING],
                status=CampaignStatus.COMPLETED,
                started_at=campaign.started_at or now,
                completed_at=now,
                stats=CampaignStats(total=0),
            )
            if completed is not None:
                logger.info(f"Campaign {campaign_id} has no recipients, completed")
                await self._publish(completed)
            return completed

        if campaign.status != CampaignStatus.RUNNING:
            running = await self.store.update_campaign_if(
                campaign_id,
                _STARTABLE,
                status=CampaignStatus.RUNNING,
                started_at=now,
                stats=campaign.stats.model_copy(update={"total": len(recipients)}),
            )
            if running is None:
                logger.info(f"Campaign {campaign_id} started concurrently, skipping")
                return await self.store.get_campaign(campaign_id)
            campaign = running
            await self._publish(campaign)

        pending = [r for r in recipients if r.status == RecipientStatus.PENDING]
        queued = await self._fan_out(campaign, pending)
        logger.info(f"Campaign {campaign_id} running: {queued}/{len(recipients)} sends queued")

        if not pending:
            return await self.maybe_complete(campaign_id)
        return campaign

    async def _fan_out(self, campaign: Campaign, recipients: list[CampaignRecipient]) -> int:
        channel = await self.store.get_channel(campaign.channel_id)
        channel_type = channel.provider_type if channel else None
        for recipient in recipients:
            contact = await self.store.get_contact(recipient.contact_id)
            snapshot = (
                CampaignContact(
                    id=contact.id,
                    name=contact.name,
                    phone=contact.phone,
                    email=contact.email,
                    external_id=contact.external_id,
                )
                if contact
                else CampaignContact(id=recipient.contact_id)
            )
            job = CampaignSendJob(
                tenant_id=campaign.tenant_id,
                campaign_id=campaign.id,
                channel_id=campaign.channel_id,
                channel_type=channel_type,
                contact=snapshot,
                content=campaign.content,
                template_id=campaign.template_id,
                template_params={
                    key: str(value) for key, value in campaign.template_params.items()
                },
                recipient_id=recipient.id,
            )
            await self.queue.enqueue(CAMPAIGNS_QUEUE, "send-message", job.to_wire())
        return len(recipients)

    async def pause(self, campaign_id: str) -> Campaign:
        """Stop sending to pending recipients. In-flight sends complete."""
        updated = await self.store.update_campaign_if(
            campaign_id, [CampaignStatus.RUNNING], status=CampaignStatus.PAUSED
        )
        if updated is None:
            campaign = await self._require(campaign_id)
            raise InvalidTransitionError(f"Cannot pause a {campaign.status.value} campaign")
        logger.info(f"Campaign {campaign_id} paused")
        await self._publish(updated)
        return updated

    async def resume(self, campaign_id: str) -> Campaign:
        """Return to ``running`` and re-queue recipients that are still pending."""
        updated = await self.store.update_campaign_if(
            campaign_id, [CampaignStatus.PAUSED], status=CampaignStatus.RUNNING
        )
        if updated is None:
            campaign = await self._require(campaign_id)
            raise InvalidTransitionError(f"Cannot resume a {campaign.status.value} campaign")
        await self._publish(updated)

        pending = await self.store.list_campaign_recipients(
            campaign_id, RecipientStatus.PENDING
        )
        queued = await self._fan_out(updated, pending)
        logger.info(f"Campaign {campaign_id} resumed, {queued} sends re-queued")
        if not pending:
            return await self.maybe_complete(campaign_id) or updated
        return updated

    async def cancel(self, campaign_id: str) -> Campaign:
        """Stop the campaign permanently. Pending recipients stay pending."""
        updated = await self.store.update_campaign_if(
            campaign_id,
            _CANCELLABLE,
            status=CampaignStatus.CANCELLED,
            completed_at=utc_now(),
        )
        if updated is None:
            campaign = await self._require(campaign_id)
            raise InvalidTransitionError(f"Cannot cancel a {campaign.status.value} campaign")
        logger.info(f"Campaign {campaign_id} cancelled")
        await self._publish(updated)
        return updated

    async def maybe_complete(self, campaign_id: str) -> Campaign | None:
        """Complete a running campaign once no recipient is pending."""
        counts = await self.store.count_recipients_by_status(campaign_id)
        if counts[RecipientStatus.PENDING] > 0:
            return None
        completed = await self.store.update_campaign_if(
            campaign_id,
            [CampaignStatus.RUNNING],
            status=CampaignStatus.COMPLETED,
            completed_at=utc_now(),
            stats=campaign_stats(counts),
        )
        if completed is not None:
            logger.info(f"Campaign {campaign_id} completed ({completed.stats.model_dump()})")
            await self._publish(completed)
        return completed

    # ------------------------------------------------------------------
    # Per-recipient send
    # ------------------------------------------------------------------

    async def send_message(self, job: CampaignSendJob) -> Message | None:
        """
        Create and queue the campaign message for one recipient.

        The recipient is claimed ``pending -> sent`` first. A recipient left
        ``sent`` without a ``message_id`` belongs to an interrupted attempt and
        is picked up again; the message id is derived from the recipient, so
        the retry finds the message the interrupted attempt may have stored.

        Returns:
            The outbound message, or None when the recipient was skipped
        """
        campaign = await self.store.get_campaign(job.campaign_id)
        if campaign is None or campaign.status != CampaignStatus.RUNNING:
            status = campaign.status.value if campaign else "missing"
            logger.info(f"Campaign {job.campaign_id} is {status}, skipping recipient")
            return None

        recipient_id = job.recipient_id or await self._find_recipient_id(job)
        if recipient_id is None:
            logger.warning(
                f"Contact {job.contact_id} is not a recipient of campaign {job.campaign_id}"
            )
            return None

        claimed = await self.store.update_recipient_if(
            recipient_id,
            [RecipientStatus.PENDING],
            status=RecipientStatus.SENT,
            sent_at=utc_now(),
        )
        if claimed is None:
            recipient = await self.store.get_campaign_recipient(recipient_id)
            if (
                recipient is None
                or recipient.status != RecipientStatus.SENT
                or recipient.message_id is not None
            ):
                logger.debug(f"Recipient {recipient_id} already handled")
                await self.maybe_complete(job.campaign_id)
                return None
            logger.info(f"Resuming interrupted send for recipient {recipient_id}")

        try:
            message = await self._create_and_queue(campaign, job, recipient_id)
        except BaseException:
            # Hand the recipient back so the retried job starts from a clean claim
            await self.store.update_recipient_if(
                recipient_id,
                [RecipientStatus.SENT],
                status=RecipientStatus.PENDING,
                sent_at=None,
                message_id=None,
            )
            raise

        await refresh_campaign_stats(self.store, self.broadcaster, job.campaign_id)
        await self.maybe_complete(job.campaign_id)
        return message

    async def abandon(self, job: CampaignSendJob, error: str) -> None:
        """Give up on a recipient whose send job ran out of attempts."""
        recipient_id = job.recipient_id or await self._find_recipient_id(job)
        if recipient_id is not None:
            await self._fail_recipient(recipient_id, error)
        await refresh_campaign_stats(self.store, self.broadcaster, job.campaign_id)
        await self.maybe_complete(job.campaign_id)

    async def _find_recipient_id(self, job: CampaignSendJob) -> str | None:
        for recipient in await self.store.list_campaign_recipients(job.campaign_id):
            if recipient.contact_id == job.contact_id:
                return recipient.id
        return None

    async def _fail_recipient(self, recipient_id: str, error: str) -> None:
        logger.warning(f"Campaign recipient {recipient_id} failed: {error}")
        await self.store.update_recipient_if(
            recipient_id,
            [RecipientStatus.PENDING, RecipientStatus.SENT],
            status=RecipientStatus.FAILED,
            error_message=error,
        )

    def _body_for(
        self, campaign: Campaign, job: CampaignSendJob, variables: dict[str, str]
    ) -> OutboundMessageBody | None:
        template_id = job.template_id or campaign.template_id
        content = job.content if job.content is not None else campaign.content
        if template_id:
            params = job.template_params or campaign.template_params
            return OutboundMessageBody(
                type=MessageType.TEMPLATE,
                content=interpolate(content, variables),
                template_id=template_id,
                template_params={
                    key: interpolate(str(value), variables) for key, value in params.items()
                },
            )
        if content:
            return OutboundMessageBody(
                type=MessageType.TEXT, content=interpolate(content, variables)
            )
        return None

    async def _create_and_queue(
        self, campaign: Campaign, job: CampaignSendJob, recipient_id: str
    ) -> Message | None:
        contact = await self.store.get_contact(job.contact_id)
        if contact is None:
            await self._fail_recipient(recipient_id, "Contact not found")
            return None

        body = self._body_for(campaign, job, build_contact_context(contact))
        if body is None:
            await self._fail_recipient(recipient_id, "Campaign has no content or template")
            return None

        conversation, _ = await self.contacts.resolve_conversation(
            campaign.tenant_id,
            job.channel_id,
            contact.id,
            metadata={"source": "campaign", "campaignId": campaign.id},
        )

        message_id = campaign_message_id(recipient_id)
        message = await self.store.get_message(message_id)
        if message is None:
            try:
                message = await self.store.create_message(
                    Message(
                        id=message_id,
                        tenant_id=campaign.tenant_id,
                        conversation_id=conversation.id,
                        sender_type=SenderType.USER,
                        direction=MessageDirection.OUTBOUND,
                        type=body.type,
                        content=body.content,
                        status=MessageStatus.PENDING,
                        metadata={
                            "source": "campaign",
                            "campaignId": campaign.id,
                            "recipientId": recipient_id,
                        },
                    )
                )
            except DuplicateEntityError:
                message = await self.store.get_message(message_id)
                is_new = False
            else:
                is_new = True
        else:
            is_new = False

        if message.status == MessageStatus.PENDING:
            send_job = SendMessageJob(
                tenant_id=campaign.tenant_id,
                conversation_id=conversation.id,
                channel_id=job.channel_id,
                channel_type=job.channel_type,
                message_id=message.id,
                message=body,
                recipient_phone=contact.phone,
                recipient_external_id=contact.external_id,
            )
            await self.queue.enqueue(MESSAGES_QUEUE, "send", send_job.to_wire())

        # message_id marks the send as queued; a claim without it is resumable
        await self.store.update_recipient_if(
            recipient_id, [RecipientStatus.SENT], message_id=message.id
        )

        if is_new:
            await self.store.update_conversation(conversation.id, last_message_at=utc_now())
            await self.broadcaster.publish(
                BroadcastEvent.NEW_MESSAGE,
                {
                    "tenantId": campaign.tenant_id,
                    "conversationId": conversation.id,
                    "data": message_payload(message),
                },
            )
        return message


def campaign_message_id(recipient_id: str) -> str:
    """Stable id of the message a campaign sends to one recipient."""
    return str(uuid5(NAMESPACE_URL, f"conduit:campaign-recipient:{recipient_id}"))
