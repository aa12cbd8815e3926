"""Durable job queue interface."""

from abc import ABC, abstractmethod
from typing import Any

from conduit.workers.job import Job, RetryPolicy


class IJobQueue(ABC):
    """
    At-least-once job queue with priorities, delays and a dead-letter set.

    A dequeued job is leased. It must be acknowledged with ``complete``,
    ``retry`` or ``fail``; leases that expire are returned to the waiting set
    by ``recover_stalled`` while the job has attempts left.
    """

    @abstractmethod
    async def enqueue(
        self,
        queue: str,
        name: str,
        payload: dict[str, Any],
        *,
        priority: int | None = None,
        delay: float = 0,
        retry: RetryPolicy | None = None,
    ) -> Job:
        """
        Add a job.

        Args:
            queue: Queue name
            name: Job name routed to a handler
            payload: JSON-serializable payload (camelCase keys)
            priority: Lower runs first; queue default when None
            delay: Seconds before the job becomes runnable
            retry: Retry policy; queue default when None
        """
        ...

    @abstractmethod
    async def dequeue(self, queue: str, timeout: float = 1.0) -> Job | None:
        """
        Lease the next runnable job, waiting up to ``timeout`` seconds.

        Leasing counts as an attempt: ``attempts_made`` is incremented.
        """
        ...

    @abstractmethod
    async def complete(self, job: Job) -> None: ...

    @abstractmethod
    async def retry(self, job: Job, delay: float, error: str) -> None:
        """Return a failed job to the queue after ``delay`` seconds."""
        ...

    @abstractmethod
    async def fail(self, job: Job, error: str) -> None:
        """Move a job to the bounded dead-letter set."""
        ...

    @abstractmethod
    async def recover_stalled(self, queue: str) -> list[Job]:
        """
        Requeue jobs whose lease expired.

        Returns:
            Expired jobs with no attempts left. They stay leased and the caller
            must dead-letter them with ``fail``.
        """
        ...

    @abstractmethod
    async def dead_letters(self, queue: str, limit: int = 100) -> list[Job]: ...

    @abstractmethod
    async def size(self, queue: str) -> int:
        """Number of waiting plus delayed jobs."""
        ...
