"""Redis queue and broadcaster against fakeredis."""

import asyncio
import json
from unittest.mock import AsyncMock

import fakeredis
import pytest

from conduit.domain.interfaces.broadcast_interface import BROADCAST_CHANNEL
from conduit.persistence.redis import RedisBroadcaster, RedisJobQueue
from conduit.schemas.core.types import BroadcastEvent
from conduit.workers.job import JobPriority
from conduit.workers.queues import AI_QUEUE, MESSAGES_QUEUE, QUEUES, WEBHOOKS_QUEUE
from conduit.workers.worker_pool import WorkerPool


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def queue(redis) -> RedisJobQueue:
    return RedisJobQueue(redis, prefix="test", visibility_timeout=60)


class TestRedisJobQueue:
    async def test_enqueue_and_dequeue(self, queue):
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {"tenantId": "t1"})

        leased = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert leased.id == job.id
        assert leased.payload == {"tenantId": "t1"}
        assert leased.attempts_made == 1
        assert leased.retry == QUEUES[MESSAGES_QUEUE].retry
        assert await queue.dequeue(MESSAGES_QUEUE, timeout=0) is None

    async def test_priority_order(self, queue):
        await queue.enqueue(AI_QUEUE, "sentiment", {}, priority=JobPriority.SENTIMENT)
        await queue.enqueue(AI_QUEUE, "chatbot", {}, priority=JobPriority.CHATBOT)
        await queue.enqueue(AI_QUEUE, "suggest", {}, priority=JobPriority.SUGGESTION)

        names = [(await queue.dequeue(AI_QUEUE, timeout=0)).name for _ in range(3)]

        assert names == ["chatbot", "suggest", "sentiment"]

    async def test_fifo_within_priority(self, queue):
        first = await queue.enqueue(WEBHOOKS_QUEUE, "process", {"n": 1})
        await asyncio.sleep(0.002)
        await queue.enqueue(WEBHOOKS_QUEUE, "process", {"n": 2})

        assert (await queue.dequeue(WEBHOOKS_QUEUE, timeout=0)).id == first.id

    async def test_delayed_job_is_not_runnable_yet(self, queue):
        await queue.enqueue(MESSAGES_QUEUE, "send", {}, delay=60)

        assert await queue.dequeue(MESSAGES_QUEUE, timeout=0) is None
        assert await queue.size(MESSAGES_QUEUE) == 1

    async def test_delay_elapses(self, queue):
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {}, delay=0.01)
        await asyncio.sleep(0.03)

        assert (await queue.dequeue(MESSAGES_QUEUE, timeout=0)).id == job.id

    async def test_blocking_dequeue_times_out(self, queue):
        assert await queue.dequeue(MESSAGES_QUEUE, timeout=0.1) is None

    async def test_complete_removes_job(self, queue, redis):
        await queue.enqueue(MESSAGES_QUEUE, "send", {})
        job = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        await queue.complete(job)

        assert await redis.hlen("test:messages:jobs") == 0
        assert await redis.zcard("test:messages:active") == 0
        assert await redis.llen("test:messages:completed") == 1

    async def test_retry_keeps_attempts_and_error(self, queue):
        await queue.enqueue(MESSAGES_QUEUE, "send", {})
        job = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        await queue.retry(job, 0, "timeout")
        again = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert again.id == job.id
        assert again.attempts_made == 2
        assert again.last_error == "timeout"

    async def test_fail_dead_letters(self, queue):
        await queue.enqueue(MESSAGES_QUEUE, "send", {"tenantId": "t1"})
        job = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        await queue.fail(job, "gave up")

        [dead] = await queue.dead_letters(MESSAGES_QUEUE)
        assert dead.id == job.id
        assert dead.last_error == "gave up"
        assert await queue.size(MESSAGES_QUEUE) == 0

    async def test_expired_lease_is_recovered(self, redis):
        queue = RedisJobQueue(redis, prefix="test", visibility_timeout=0)
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {})
        await queue.dequeue(MESSAGES_QUEUE, timeout=0)
        await asyncio.sleep(0.002)

        assert await queue.recover_stalled(MESSAGES_QUEUE) == []
        redelivered = await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert redelivered.id == job.id
        assert redelivered.attempts_made == 2

    async def test_live_lease_is_not_recovered(self, queue):
        await queue.enqueue(MESSAGES_QUEUE, "send", {})
        await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert await queue.recover_stalled(MESSAGES_QUEUE) == []
        assert await queue.dequeue(MESSAGES_QUEUE, timeout=0) is None

    async def test_dequeue_moves_job_straight_into_active(self, queue, redis):
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {})

        await queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert await redis.zcard("test:messages:waiting") == 0
        assert await redis.zscore("test:messages:active", job.id) is not None

    async def test_blocking_dequeue_picks_up_late_job(self, queue):
        async def enqueue_later():
            await asyncio.sleep(0.05)
            return await queue.enqueue(MESSAGES_QUEUE, "send", {})

        task = asyncio.create_task(enqueue_later())
        leased = await queue.dequeue(MESSAGES_QUEUE, timeout=2)

        assert leased.id == (await task).id

    async def test_stall_on_last_attempt_is_returned_not_requeued(self, redis):
        queue = RedisJobQueue(redis, prefix="test", visibility_timeout=0)
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {})
        attempts = QUEUES[MESSAGES_QUEUE].retry.attempts

        for _ in range(attempts - 1):
            await queue.dequeue(MESSAGES_QUEUE, timeout=0)
            await asyncio.sleep(0.002)
            assert await queue.recover_stalled(MESSAGES_QUEUE) == []
        await queue.dequeue(MESSAGES_QUEUE, timeout=0)
        await asyncio.sleep(0.002)

        [stalled] = await queue.recover_stalled(MESSAGES_QUEUE)

        assert stalled.id == job.id
        assert stalled.attempts_made == attempts
        assert await queue.dequeue(MESSAGES_QUEUE, timeout=0) is None
        assert await redis.zscore("test:messages:active", job.id) is not None

    async def test_worker_pool_dead_letters_stalled_job(self, redis):
        queue = RedisJobQueue(redis, prefix="test", visibility_timeout=0)
        exhausted = []

        async def on_exhausted(job, error):
            exhausted.append(job.id)

        pool = WorkerPool(queue, MESSAGES_QUEUE, {}, on_exhausted=on_exhausted)
        job = await queue.enqueue(MESSAGES_QUEUE, "send", {})

        for _ in range(QUEUES[MESSAGES_QUEUE].retry.attempts):
            await queue.dequeue(MESSAGES_QUEUE, timeout=0)
            await asyncio.sleep(0.002)
            await pool.recover_stalled()

        [dead] = await queue.dead_letters(MESSAGES_QUEUE)
        assert dead.id == job.id
        assert exhausted == [job.id]
        assert await redis.zcard("test:messages:active") == 0

    async def test_worker_pool_on_redis(self, queue):
        calls = []

        async def handler(job):
            calls.append(job.payload["n"])
            if job.payload["n"] == 2:
                raise ValueError("bad input")

        pool = WorkerPool(queue, AI_QUEUE, {"sentiment": handler})
        for n in (1, 2):
            await queue.enqueue(AI_QUEUE, "sentiment", {"n": n})

        await pool.run_until_empty()

        assert sorted(calls) == [1, 2]
        # Fixed 5 s backoff: the failed job waits in the delayed set
        assert await queue.size(AI_QUEUE) == 1


class TestRedisBroadcaster:
    async def test_publishes_envelope(self, redis):
        pubsub = redis.pubsub()
        await pubsub.subscribe(BROADCAST_CHANNEL)
        await pubsub.get_message(timeout=1)  # subscribe confirmation
        broadcaster = RedisBroadcaster(redis)

        count = await broadcaster.publish(
            BroadcastEvent.NEW_MESSAGE,
            {"tenantId": "t1", "conversationId": "c1", "data": {"id": "m1"}},
        )

        message = None
        for _ in range(10):
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
            if message:
                break
        assert count == 1
        assert json.loads(message["data"]) == {
            "type": "message:new",
            "tenantId": "t1",
            "conversationId": "c1",
            "data": {"id": "m1"},
        }
        await pubsub.aclose()

    async def test_publish_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")

        count = await RedisBroadcaster(redis).publish(BroadcastEvent.CAMPAIGN_UPDATE, {})

        assert count == 0
