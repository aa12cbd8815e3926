"""
Job handlers for every queue.

Payloads are validated into their job models here; a payload that does not
validate can never succeed, so it is dead-lettered without retries.
"""

from typing import TypeVar

from pydantic import ValidationError

from conduit.ai.enrichment import AIEnrichmentService
from conduit.campaigns.orchestrator import CampaignOrchestrator
from conduit.core.logging.logger import get_logger
from conduit.domain.errors import UnrecoverableJobError
from conduit.messaging.dispatcher import OutboundDispatcher
from conduit.schemas.jobs import (
    CampaignSendJob,
    CampaignStartJob,
    ChatbotJob,
    JobPayload,
    ProcessIncomingJob,
    SendMessageJob,
    SentimentJob,
    SuggestionJob,
    TranscriptionJob,
)
from conduit.services.inbound_pipeline import InboundPipeline
from conduit.workers.job import Job
from conduit.workers.queues import AI_QUEUE, CAMPAIGNS_QUEUE, MESSAGES_QUEUE, WEBHOOKS_QUEUE
from conduit.workers.worker_pool import ExhaustedHook, JobHandler

logger = get_logger(__name__)

P = TypeVar("P", bound=JobPayload)


def parse_payload(job: Job, model: type[P]) -> P:
    try:
        return model.model_validate(job.payload)
    except ValidationError as e:
        raise UnrecoverableJobError(
            f"Invalid {job.queue}:{job.name} payload: {e.error_count()} error(s)",
            {"errors": e.errors(include_url=False)},
        ) from e


class JobHandlers:
    """Binds the services to job names, one handler map per queue."""

    def __init__(
        self,
        pipeline: InboundPipeline,
        dispatcher: OutboundDispatcher,
        orchestrator: CampaignOrchestrator,
        enrichment: AIEnrichmentService,
    ):
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.orchestrator = orchestrator
        self.enrichment = enrichment

    def for_queue(self, queue: str) -> dict[str, JobHandler]:
        routes: dict[str, dict[str, JobHandler]] = {
            WEBHOOKS_QUEUE: {"process": self.process_incoming},
            MESSAGES_QUEUE: {
                "send": self.send_message,
                "process-incoming": self.process_incoming,
            },
            CAMPAIGNS_QUEUE: {
                "start": self.start_campaign,
                "send-message": self.send_campaign_message,
            },
            AI_QUEUE: {
                "transcribe": self.transcribe,
                "suggest": self.suggest,
                "sentiment": self.sentiment,
                "chatbot": self.chatbot,
            },
        }
        return routes.get(queue, {})

    def exhausted_hook(self, queue: str) -> ExhaustedHook | None:
        hooks = {
            MESSAGES_QUEUE: self.on_message_exhausted,
            CAMPAIGNS_QUEUE: self.on_campaign_exhausted,
        }
        return hooks.get(queue)

    # webhooks / messages ------------------------------------------------

    async def process_incoming(self, job: Job) -> None:
        payload = parse_payload(job, ProcessIncomingJob)
        result = await self.pipeline.process(
            payload.provider,
            payload.raw_payload,
            payload.headers,
            channel_id=payload.channel_id,
        )
        logger.info(
            f"Processed {payload.provider.value} webhook: {result.events} event(s), "
            f"{len(result.messages)} new message(s), {result.statuses} status update(s)"
        )

    async def send_message(self, job: Job) -> None:
        await self.dispatcher.send(parse_payload(job, SendMessageJob))

    async def on_message_exhausted(self, job: Job, error: Exception) -> None:
        if job.name != "send":
            return
        try:
            payload = SendMessageJob.model_validate(job.payload)
        except ValidationError:
            return
        await self.dispatcher.mark_failed(payload, str(error) or type(error).__name__)

    # campaigns ----------------------------------------------------------

    async def start_campaign(self, job: Job) -> None:
        payload = parse_payload(job, CampaignStartJob)
        await self.orchestrator.start(payload.campaign_id)

    async def send_campaign_message(self, job: Job) -> None:
        await self.orchestrator.send_message(parse_payload(job, CampaignSendJob))

    async def on_campaign_exhausted(self, job: Job, error: Exception) -> None:
        if job.name != "send-message":
            return
        try:
            payload = CampaignSendJob.model_validate(job.payload)
        except ValidationError:
            return
        await self.orchestrator.abandon(payload, str(error) or type(error).__name__)

    # ai -----------------------------------------------------------------

    async def transcribe(self, job: Job) -> None:
        await self.enrichment.transcribe(parse_payload(job, TranscriptionJob))

    async def suggest(self, job: Job) -> None:
        await self.enrichment.suggest(parse_payload(job, SuggestionJob))

    async def sentiment(self, job: Job) -> None:
        await self.enrichment.sentiment(parse_payload(job, SentimentJob))

    async def chatbot(self, job: Job) -> None:
        payload = parse_payload(job, ChatbotJob)
        await self.enrichment.chatbot(payload, idempotency_key=job.id)
