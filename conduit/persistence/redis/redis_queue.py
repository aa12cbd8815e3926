"""
Durable job queue on Redis.

Key layout per queue (``{prefix}:{queue}:...``):

- ``jobs``       hash  job id -> job JSON
- ``waiting``    zset  job id scored by priority, then enqueue time
- ``delayed``    zset  job id scored by ready time (ms)
- ``active``     zset  job id scored by lease deadline (ms)
- ``completed``  list  most recent finished jobs, trimmed
- ``failed``     list  dead letters, trimmed

Delivery is at-least-once. A job leaves ``waiting`` and enters ``active`` in
one script, so no job is ever held by a worker without a lease. A worker that
dies mid-job leaves its lease behind and ``recover_stalled`` moves the job
back to ``waiting``, or hands it back for dead-lettering once its attempts
are spent.
"""

import asyncio
import logging
import time
from typing import Any

from redis.asyncio import Redis

from conduit.core.config.settings import settings
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.workers.job import Job, RetryPolicy
from conduit.workers.queues import get_queue_config

logger = logging.getLogger(__name__)

# Priority dominates the waiting score; ms timestamps stay below this.
_PRIORITY_WEIGHT = 10**13

# Seconds between claim attempts while a blocking dequeue waits
_POLL_INTERVAL = 0.25

# KEYS: waiting, active. ARGV: lease deadline (ms)
_CLAIM_NEXT = """
local popped = redis.call('ZPOPMIN', KEYS[1])
if #popped == 0 then
    return false
end
redis.call('ZADD', KEYS[2], ARGV[1], popped[1])
return popped[1]
"""

# KEYS: active. ARGV: job id, now (ms), new lease deadline (ms)
_CLAIM_EXPIRED = """
local score = redis.call('ZSCORE', KEYS[1], ARGV[1])
if not score or tonumber(score) > tonumber(ARGV[2]) then
    return 0
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[1])
return 1
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisJobQueue(IJobQueue):
    """
    Priority/delay job queue.

    Args:
        redis: Client from the "queue" pool
        prefix: Key prefix shared by every queue
        visibility_timeout: Lease length in seconds before a job counts as stalled
    """

    def __init__(
        self,
        redis: Redis,
        prefix: str | None = None,
        visibility_timeout: int | None = None,
    ):
        self.redis = redis
        self.prefix = prefix or settings.queue_prefix
        self.visibility_timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else settings.queue_visibility_timeout
        )
        self._claim_next = redis.register_script(_CLAIM_NEXT)
        self._claim_expired = redis.register_script(_CLAIM_EXPIRED)

    def _key(self, queue: str, part: str) -> str:
        return f"{self.prefix}:{queue}:{part}"

    @staticmethod
    def _waiting_score(job: Job) -> int:
        return job.priority * _PRIORITY_WEIGHT + _now_ms()

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
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._key(queue, "jobs"), job.id, job.to_json())
            self._schedule(pipe, job, delay)
            await pipe.execute()
        logger.debug(f"Enqueued {queue}:{name} ({job.id}) delay={delay}s")
        return job

    def _schedule(self, pipe, job: Job, delay: float) -> None:
        if delay > 0:
            ready_at = _now_ms() + int(delay * 1000)
            pipe.zadd(self._key(job.queue, "delayed"), {job.id: ready_at})
        else:
            pipe.zadd(self._key(job.queue, "waiting"), {job.id: self._waiting_score(job)})

    async def _promote_delayed(self, queue: str) -> int:
        """Move delayed jobs whose time has come into the waiting set."""
        delayed_key = self._key(queue, "delayed")
        due = await self.redis.zrangebyscore(delayed_key, "-inf", _now_ms())
        promoted = 0
        for job_id in due:
            # zrem decides which worker owns the promotion
            if not await self.redis.zrem(delayed_key, job_id):
                continue
            raw = await self.redis.hget(self._key(queue, "jobs"), job_id)
            if raw is None:
                continue
            job = Job.from_json(raw)
            await self.redis.zadd(
                self._key(queue, "waiting"), {job_id: self._waiting_score(job)}
            )
            promoted += 1
        return promoted

    def _lease_deadline(self) -> int:
        return _now_ms() + self.visibility_timeout * 1000

    async def dequeue(self, queue: str, timeout: float = 1.0) -> Job | None:
        waiting_key = self._key(queue, "waiting")
        active_key = self._key(queue, "active")
        deadline = time.monotonic() + timeout
        while True:
            await self._promote_delayed(queue)
            job_id = await self._claim_next(
                keys=[waiting_key, active_key], args=[self._lease_deadline()]
            )
            if job_id is not None:
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(_POLL_INTERVAL, remaining))

        raw = await self.redis.hget(self._key(queue, "jobs"), job_id)
        if raw is None:
            logger.warning(f"Job {job_id} on '{queue}' has no body - dropping")
            await self.redis.zrem(active_key, job_id)
            return None

        job = Job.from_json(raw)
        job.attempts_made += 1
        await self.redis.hset(self._key(queue, "jobs"), job.id, job.to_json())
        return job

    async def complete(self, job: Job) -> None:
        config = get_queue_config(job.queue)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hdel(self._key(job.queue, "jobs"), job.id)
            pipe.lpush(self._key(job.queue, "completed"), job.to_json())
            pipe.ltrim(self._key(job.queue, "completed"), 0, config.keep_completed - 1)
            await pipe.execute()

    async def retry(self, job: Job, delay: float, error: str) -> None:
        job.last_error = error
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hset(self._key(job.queue, "jobs"), job.id, job.to_json())
            self._schedule(pipe, job, delay)
            await pipe.execute()

    async def fail(self, job: Job, error: str) -> None:
        config = get_queue_config(job.queue)
        job.last_error = error
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._key(job.queue, "active"), job.id)
            pipe.hdel(self._key(job.queue, "jobs"), job.id)
            pipe.lpush(self._key(job.queue, "failed"), job.to_json())
            pipe.ltrim(self._key(job.queue, "failed"), 0, config.keep_failed - 1)
            await pipe.execute()

    async def recover_stalled(self, queue: str) -> list[Job]:
        active_key = self._key(queue, "active")
        now = _now_ms()
        expired = await self.redis.zrangebyscore(active_key, "-inf", now)
        requeued = 0
        exhausted: list[Job] = []
        for job_id in expired:
            # Renewing the lease decides which worker owns the recovery
            if not await self._claim_expired(
                keys=[active_key], args=[job_id, now, self._lease_deadline()]
            ):
                continue
            raw = await self.redis.hget(self._key(queue, "jobs"), job_id)
            if raw is None:
                await self.redis.zrem(active_key, job_id)
                continue
            job = Job.from_json(raw)
            if not job.retry.can_retry(job.attempts_made):
                exhausted.append(job)
                continue
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(active_key, job_id)
                pipe.zadd(self._key(queue, "waiting"), {job_id: self._waiting_score(job)})
                await pipe.execute()
            requeued += 1
        if requeued:
            logger.warning(f"Requeued {requeued} stalled job(s) on '{queue}'")
        return exhausted

    async def dead_letters(self, queue: str, limit: int = 100) -> list[Job]:
        raw_jobs = await self.redis.lrange(self._key(queue, "failed"), 0, limit - 1)
        return [Job.from_json(raw) for raw in raw_jobs]

    async def size(self, queue: str) -> int:
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.zcard(self._key(queue, "waiting"))
            pipe.zcard(self._key(queue, "delayed"))
            waiting, delayed = await pipe.execute()
        return int(waiting) + int(delayed)
