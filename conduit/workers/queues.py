"""
Queue names and their per-queue defaults.

Concurrency comes from settings so it can be tuned per deployment; retry
policy and retention are fixed per queue.
"""

from dataclasses import dataclass

from conduit.core.config.settings import settings
from conduit.workers.job import BackoffStrategy, JobPriority, RetryPolicy

WEBHOOKS_QUEUE = "webhooks"
MESSAGES_QUEUE = "messages"
CAMPAIGNS_QUEUE = "campaigns"
AI_QUEUE = "ai"


@dataclass(frozen=True)
class QueueConfig:
    """Defaults applied to every job enqueued on a queue."""

    name: str
    concurrency: int
    retry: RetryPolicy
    keep_completed: int = 100
    keep_failed: int = 1000
    default_priority: int = JobPriority.DEFAULT


QUEUES: dict[str, QueueConfig] = {
    WEBHOOKS_QUEUE: QueueConfig(
        name=WEBHOOKS_QUEUE,
        concurrency=settings.webhook_concurrency,
        retry=RetryPolicy(
            attempts=5, backoff=BackoffStrategy.EXPONENTIAL, delay_ms=2000
        ),
        default_priority=JobPriority.INBOUND,
    ),
    MESSAGES_QUEUE: QueueConfig(
        name=MESSAGES_QUEUE,
        concurrency=settings.message_concurrency,
        retry=RetryPolicy(
            attempts=3, backoff=BackoffStrategy.EXPONENTIAL, delay_ms=1000
        ),
    ),
    CAMPAIGNS_QUEUE: QueueConfig(
        name=CAMPAIGNS_QUEUE,
        concurrency=settings.campaign_concurrency,
        retry=RetryPolicy(
            attempts=3, backoff=BackoffStrategy.EXPONENTIAL, delay_ms=5000
        ),
        keep_failed=500,
    ),
    AI_QUEUE: QueueConfig(
        name=AI_QUEUE,
        concurrency=settings.ai_concurrency,
        retry=RetryPolicy(attempts=2, backoff=BackoffStrategy.FIXED, delay_ms=5000),
        keep_completed=50,
        keep_failed=200,
    ),
}


def get_queue_config(queue: str) -> QueueConfig:
    """
    Config for a queue name.

    Unknown queues get a single-attempt policy and concurrency 1.
    """
    return QUEUES.get(queue) or QueueConfig(
        name=queue, concurrency=1, retry=RetryPolicy(attempts=1)
    )
