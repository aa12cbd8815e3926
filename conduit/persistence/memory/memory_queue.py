"""
In-process job queue.

Mirrors the Redis queue's behaviour (priorities, delays, expiring leases,
bounded completed/failed sets) on heaps and dicts. Nothing survives a restart, so it
is only meant for development and tests.
"""

import asyncio
import heapq
import itertools
import logging
from collections import deque
from typing import Any

from conduit.core.config.settings import settings
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.workers.job import Job, RetryPolicy
from conduit.workers.queues import get_queue_config

logger = logging.getLogger("MemoryJobQueue")


class _QueueState:
    def __init__(self, name: str):
        config = get_queue_config(name)
        self.waiting: list[tuple[int, int, str]] = []
        self.delayed: list[tuple[float, int, str]] = []
        self.jobs: dict[str, Job] = {}
        self.active: dict[str, float] = {}
        self.completed: deque[Job] = deque(maxlen=config.keep_completed)
        self.failed: deque[Job] = deque(maxlen=config.keep_failed)
        self.condition = asyncio.Condition()


class MemoryJobQueue(IJobQueue):
    """
    Priority + delay queue per name, guarded by one condition per queue.

    Args:
        visibility_timeout: Lease length in seconds before a job counts as stalled
    """

    def __init__(self, visibility_timeout: float | None = None):
        self._queues: dict[str, _QueueState] = {}
        self._sequence = itertools.count()
        self.visibility_timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else settings.queue_visibility_timeout
        )

    def _state(self, queue: str) -> _QueueState:
        if queue not in self._queues:
            self._queues[queue] = _QueueState(queue)
        return self._queues[queue]

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

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
        config = get_queue_config(queue)
        job = Job(
            queue=queue,
            name=name,
            payload=payload,
            retry=retry or config.retry,
            priority=config.default_priority if priority is None else priority,
        )
        state = self._state(queue)
        async with state.condition:
            state.jobs[job.id] = job
            self._schedule(state, job, delay)
            state.condition.notify()
        logger.debug(f"Enqueued {queue}:{name} ({job.id}) delay={delay}s")
        return job

    def _schedule(self, state: _QueueState, job: Job, delay: float) -> None:
        seq = next(self._sequence)
        if delay > 0:
            heapq.heappush(state.delayed, (self._now() + delay, seq, job.id))
        else:
            heapq.heappush(state.waiting, (job.priority, seq, job.id))

    def _promote(self, state: _QueueState, force: bool = False) -> None:
        now = self._now()
        while state.delayed and (force or state.delayed[0][0] <= now):
            _, seq, job_id = heapq.heappop(state.delayed)
            job = state.jobs.get(job_id)
            if job is not None:
                heapq.heappush(state.waiting, (job.priority, seq, job_id))

    async def promote_delayed(self, queue: str) -> None:
        """Make every delayed job runnable now."""
        state = self._state(queue)
        async with state.condition:
            self._promote(state, force=True)
            state.condition.notify_all()

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Job | None:
        state = self._state(queue)
        deadline = self._now() + timeout
        async with state.condition:
            while True:
                self._promote(state)
                if state.waiting:
                    _, _, job_id = heapq.heappop(state.waiting)
                    job = state.jobs[job_id]
                    job.attempts_made += 1
                    state.active[job_id] = self._now() + self.visibility_timeout
                    return job

                remaining = deadline - self._now()
                if remaining <= 0:
                    return None
                if state.delayed:
                    remaining = min(remaining, max(state.delayed[0][0] - self._now(), 0))
                try:
                    await asyncio.wait_for(state.condition.wait(), timeout=remaining)
                except TimeoutError:
                    pass

    async def complete(self, job: Job) -> None:
        state = self._state(job.queue)
        async with state.condition:
            state.active.pop(job.id, None)
            state.jobs.pop(job.id, None)
            state.completed.append(job)

    async def retry(self, job: Job, delay: float, error: str) -> None:
        state = self._state(job.queue)
        async with state.condition:
            state.active.pop(job.id, None)
            job.last_error = error
            state.jobs[job.id] = job
            self._schedule(state, job, delay)
            state.condition.notify()

    async def fail(self, job: Job, error: str) -> None:
        state = self._state(job.queue)
        async with state.condition:
            state.active.pop(job.id, None)
            state.jobs.pop(job.id, None)
            job.last_error = error
            state.failed.append(job)

    async def recover_stalled(self, queue: str) -> list[Job]:
        state = self._state(queue)
        now = self._now()
        requeued = 0
        exhausted: list[Job] = []
        async with state.condition:
            for job_id, lease_deadline in list(state.active.items()):
                if lease_deadline > now:
                    continue
                job = state.jobs.get(job_id)
                if job is None:
                    del state.active[job_id]
                    continue
                if not job.retry.can_retry(job.attempts_made):
                    state.active[job_id] = now + self.visibility_timeout
                    exhausted.append(job)
                    continue
                del state.active[job_id]
                self._schedule(state, job, 0)
                requeued += 1
            if requeued:
                state.condition.notify_all()
        if requeued:
            logger.warning(f"Requeued {requeued} stalled job(s) on '{queue}'")
        return exhausted

    async def dead_letters(self, queue: str, limit: int = 100) -> list[Job]:
        return list(self._state(queue).failed)[-limit:]

    async def completed(self, queue: str) -> list[Job]:
        return list(self._state(queue).completed)

    async def size(self, queue: str) -> int:
        state = self._state(queue)
        return len(state.waiting) + len(state.delayed)

    async def pending_jobs(self, queue: str) -> list[Job]:
        """Waiting and delayed jobs, in no particular order."""
        state = self._state(queue)
        ids = [job_id for *_, job_id in state.waiting + state.delayed]
        return [state.jobs[job_id] for job_id in ids if job_id in state.jobs]

    async def delay_of(self, job_id: str, queue: str) -> float | None:
        """Seconds until a delayed job becomes runnable, None if not delayed."""
        state = self._state(queue)
        for ready_at, _, delayed_id in state.delayed:
            if delayed_id == job_id:
                return max(ready_at - self._now(), 0)
        return None
