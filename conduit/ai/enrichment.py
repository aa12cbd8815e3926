"""
AI enrichment jobs: transcription, reply suggestions, sentiment, chatbot.

The model provider is optional and untrusted. Any provider exception or
unusable output is logged and replaced by a deterministic fallback, so these
jobs only fail on storage errors.
"""

from typing import Any
from uuid import NAMESPACE_URL, uuid5

from conduit.core.logging.logger import get_logger
from conduit.domain.errors import DuplicateEntityError
from conduit.domain.interfaces.broadcast_interface import IBroadcaster
from conduit.domain.interfaces.model_provider_interface import IModelProvider
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.domain.interfaces.store_interface import IConversationStore
from conduit.domain.models import Conversation, Message, utc_now
from conduit.schemas.core.types import (
    BroadcastEvent,
    MessageDirection,
    MessageStatus,
    MessageType,
    SenderType,
)
from conduit.schemas.jobs import (
    ChatbotJob,
    OutboundMessageBody,
    SendMessageJob,
    SentimentJob,
    SuggestionJob,
    TranscriptionJob,
)
from conduit.services.message_ingest import message_payload
from conduit.workers.queues import MESSAGES_QUEUE

from .fallbacks import (
    FALLBACK_CHATBOT_REPLY,
    FALLBACK_SUGGESTIONS,
    keyword_sentiment,
    normalize_sentiment,
    normalize_suggestions,
)

logger = get_logger(__name__)

DEFAULT_CHATBOT_PROMPT = (
    "You are a helpful customer service assistant. Answer briefly and politely "
    "in the language of the customer."
)

HISTORY_LIMIT = 10

_SENDER_ROLE = {
    SenderType.CONTACT: "contact",
    SenderType.USER: "agent",
    SenderType.BOT: "bot",
}


def _history(messages: list[Message]) -> list[dict[str, Any]]:
    return [
        {"role": _SENDER_ROLE[m.sender_type], "content": m.content}
        for m in messages
        if m.content
    ]


class AIEnrichmentService:
    """
    Args:
        store: Conversation store
        broadcaster: Real-time publisher
        provider: Model provider; None or unavailable means fallbacks only
        queue: Job queue used to deliver chatbot replies
    """

    def __init__(
        self,
        store: IConversationStore,
        broadcaster: IBroadcaster,
        provider: IModelProvider | None = None,
        queue: IJobQueue | None = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.provider = provider
        self.queue = queue

    @property
    def provider_available(self) -> bool:
        return self.provider is not None and self.provider.is_available

    # ------------------------------------------------------------------

    async def transcribe(self, job: TranscriptionJob) -> str | None:
        message = await self.store.get_message(job.message_id)
        if message is None:
            logger.warning(f"Message {job.message_id} not found, skipping transcription")
            return None

        text: str | None = None
        if self.provider_available:
            try:
                text = (await self.provider.transcribe(job.audio_url, job.language)).strip() or None
            except Exception as e:
                logger.warning(f"Transcription failed for message {job.message_id}: {e}")

        status = "completed" if text else "unavailable"
        await self.store.merge_message_metadata(
            job.message_id,
            {
                "transcription": text,
                "transcriptionStatus": status,
                "transcribedAt": utc_now().isoformat(),
            },
        )
        await self.broadcaster.publish(
            BroadcastEvent.AI_TRANSCRIPTION,
            {
                "tenantId": job.tenant_id,
                "conversationId": message.conversation_id,
                "messageId": job.message_id,
                "data": {"transcription": text, "status": status},
            },
        )
        return text

    async def suggest(self, job: SuggestionJob) -> list[str]:
        """Exactly three suggestions, merged into the conversation metadata."""
        messages: list[dict[str, Any]] = [m.model_dump() for m in job.messages]
        if not messages:
            messages = _history(await self.store.list_messages(job.conversation_id, HISTORY_LIMIT))

        suggestions = None
        if self.provider_available:
            try:
                suggestions = normalize_suggestions(await self.provider.suggest_replies(messages))
                if suggestions is None:
                    logger.warning("Provider returned unusable suggestions, using fallback")
            except Exception as e:
                logger.warning(f"Suggestion generation failed: {e}")
        suggestions = suggestions or list(FALLBACK_SUGGESTIONS)

        await self.store.merge_conversation_metadata(
            job.conversation_id,
            {"aiSuggestions": suggestions, "aiSuggestionsAt": utc_now().isoformat()},
        )
        await self.broadcaster.publish(
            BroadcastEvent.AI_SUGGESTIONS,
            {
                "tenantId": job.tenant_id,
                "conversationId": job.conversation_id,
                "data": {"suggestions": suggestions},
            },
        )
        return suggestions

    async def sentiment(self, job: SentimentJob) -> dict[str, Any]:
        """``{"label", "score"}`` merged into message and conversation metadata."""
        result = None
        if self.provider_available:
            try:
                result = normalize_sentiment(await self.provider.classify_sentiment(job.content))
                if result is None:
                    logger.warning("Provider returned unusable sentiment, using fallback")
            except Exception as e:
                logger.warning(f"Sentiment classification failed: {e}")
        result = result or keyword_sentiment(job.content)

        message = await self.store.merge_message_metadata(job.message_id, {"sentiment": result})
        if message is None:
            logger.warning(f"Message {job.message_id} not found, sentiment not stored")
            return result

        await self.store.merge_conversation_metadata(
            message.conversation_id, {"sentiment": result}
        )
        await self.broadcaster.publish(
            BroadcastEvent.AI_SENTIMENT,
            {
                "tenantId": job.tenant_id,
                "conversationId": message.conversation_id,
                "messageId": job.message_id,
                "data": result,
            },
        )
        return result

    async def chatbot(
        self, job: ChatbotJob, idempotency_key: str | None = None
    ) -> Message | None:
        """
        Generate a bot reply, store it and hand it to the dispatcher.

        The reply id is derived from the triggering message (or from
        ``idempotency_key``, usually the worker job id), so a retried job finds
        the reply it already stored and never produces a second one.
        """
        conversation = await self.store.get_conversation(job.conversation_id)
        if conversation is None:
            logger.warning(f"Conversation {job.conversation_id} not found, skipping chatbot")
            return None

        reply_id = chatbot_reply_id(job, idempotency_key)
        existing = await self.store.get_message(reply_id) if reply_id else None
        if existing is not None:
            logger.info(f"Chatbot {job.chatbot_id} already replied with {existing.id}")
            return await self._queue_reply(job, conversation, existing)

        reply = ""
        if self.provider_available:
            system_prompt = str(job.context.get("systemPrompt") or DEFAULT_CHATBOT_PROMPT)
            history = _history(await self.store.list_messages(job.conversation_id, HISTORY_LIMIT))
            if not history or history[-1]["content"] != job.message:
                history.append({"role": "contact", "content": job.message})
            try:
                reply = (await self.provider.chat(system_prompt, history)).strip()
            except Exception as e:
                logger.warning(f"Chatbot {job.chatbot_id} failed: {e}")
        reply = reply or FALLBACK_CHATBOT_REPLY

        fields = {"id": reply_id} if reply_id else {}
        try:
            message = await self.store.create_message(
                Message(
                    **fields,
                    tenant_id=job.tenant_id,
                    conversation_id=conversation.id,
                    sender_type=SenderType.BOT,
                    sender_id=job.chatbot_id,
                    direction=MessageDirection.OUTBOUND,
                    type=MessageType.TEXT,
                    content=reply,
                    status=MessageStatus.PENDING,
                    metadata={"source": "chatbot", "chatbotId": job.chatbot_id},
                )
            )
        except DuplicateEntityError:
            existing = await self.store.get_message(reply_id)
            return await self._queue_reply(job, conversation, existing)
        await self.store.update_conversation(conversation.id, last_message_at=utc_now())

        await self.broadcaster.publish(
            BroadcastEvent.NEW_MESSAGE,
            {
                "tenantId": job.tenant_id,
                "conversationId": conversation.id,
                "data": message_payload(message),
            },
        )
        await self.broadcaster.publish(
            BroadcastEvent.AI_CHATBOT,
            {
                "tenantId": job.tenant_id,
                "conversationId": conversation.id,
                "data": {"chatbotId": job.chatbot_id, "messageId": message.id, "response": reply},
            },
        )
        return await self._queue_reply(job, conversation, message)

    async def _queue_reply(
        self, job: ChatbotJob, conversation: Conversation, message: Message
    ) -> Message:
        if self.queue is None or message.metadata.get("sendQueued"):
            return message
        if message.status != MessageStatus.PENDING:
            return message

        channel = await self.store.get_channel(conversation.channel_id)
        send_job = SendMessageJob(
            tenant_id=job.tenant_id,
            conversation_id=conversation.id,
            channel_id=conversation.channel_id,
            channel_type=channel.provider_type if channel else None,
            message_id=message.id,
            message=OutboundMessageBody(type=MessageType.TEXT, content=message.content),
            sender_id=job.chatbot_id,
        )
        await self.queue.enqueue(MESSAGES_QUEUE, "send", send_job.to_wire())
        return await self.store.merge_message_metadata(message.id, {"sendQueued": True}) or message


def chatbot_reply_id(job: ChatbotJob, idempotency_key: str | None = None) -> str | None:
    """Stable id of the reply to one chatbot trigger, when the trigger is known."""
    trigger = job.message_id or idempotency_key
    if not trigger:
        return None
    return str(uuid5(NAMESPACE_URL, f"conduit:chatbot:{job.chatbot_id}:{trigger}"))
