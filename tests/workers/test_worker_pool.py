"""Worker pool retry, dead-letter and drain behaviour on the in-memory queue."""

import asyncio

import pytest

from conduit.core.logging.context import get_current_job_context, get_current_tenant_context
from conduit.domain.errors import (
    JobStalledError,
    PermanentDeliveryError,
    UnrecoverableJobError,
)
from conduit.persistence.memory import MemoryJobQueue
from conduit.workers.job import BackoffStrategy, Job, RetryPolicy
from conduit.workers.queues import AI_QUEUE, MESSAGES_QUEUE, QUEUES, WEBHOOKS_QUEUE
from conduit.workers.worker_pool import WorkerPool


class FlakyHandler:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.failures = failures
        self.error = error or RuntimeError("provider unavailable")
        self.calls = 0

    async def __call__(self, job: Job) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error


async def run_all(pool: WorkerPool, job_queue, rounds: int = 10) -> None:
    """Run jobs to completion, skipping every backoff delay."""
    for _ in range(rounds):
        await job_queue.promote_delayed(pool.queue_name)
        if await pool.run_until_empty() == 0:
            return


class TestRetryPolicy:
    def test_exponential(self):
        policy = RetryPolicy(attempts=5, backoff=BackoffStrategy.EXPONENTIAL, delay_ms=2000)

        assert [policy.backoff_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_fixed(self):
        policy = RetryPolicy(attempts=2, backoff=BackoffStrategy.FIXED, delay_ms=5000)

        assert policy.backoff_delay(1) == policy.backoff_delay(3) == 5.0

    def test_attempts_include_first_run(self):
        policy = RetryPolicy(attempts=3)

        assert policy.can_retry(2)
        assert not policy.can_retry(3)

    def test_queue_defaults(self):
        assert QUEUES[WEBHOOKS_QUEUE].retry.attempts == 5
        assert QUEUES[MESSAGES_QUEUE].retry.delay_ms == 1000
        assert QUEUES[AI_QUEUE].retry.backoff == BackoffStrategy.FIXED


class TestProcess:
    async def test_success_completes(self, job_queue):
        handler = FlakyHandler()
        pool = WorkerPool(job_queue, MESSAGES_QUEUE, {"send": handler})
        await job_queue.enqueue(MESSAGES_QUEUE, "send", {"tenantId": "t1"})

        assert await pool.run_until_empty() == 1

        assert handler.calls == 1
        assert len(await job_queue.completed(MESSAGES_QUEUE)) == 1
        assert await job_queue.size(MESSAGES_QUEUE) == 0

    async def test_failure_is_retried_with_backoff(self, job_queue):
        pool = WorkerPool(job_queue, WEBHOOKS_QUEUE, {"process": FlakyHandler(failures=1)})
        job = await job_queue.enqueue(WEBHOOKS_QUEUE, "process", {})

        await pool.run_until_empty()

        delay = await job_queue.delay_of(job.id, WEBHOOKS_QUEUE)
        assert delay == pytest.approx(2.0, abs=0.1)
        [pending] = await job_queue.pending_jobs(WEBHOOKS_QUEUE)
        assert pending.last_error == "provider unavailable"
        assert pending.attempts_made == 1

    async def test_retry_then_success(self, job_queue):
        handler = FlakyHandler(failures=2)
        pool = WorkerPool(job_queue, MESSAGES_QUEUE, {"send": handler})
        await job_queue.enqueue(MESSAGES_QUEUE, "send", {})

        await run_all(pool, job_queue)

        assert handler.calls == 3
        assert len(await job_queue.completed(MESSAGES_QUEUE)) == 1
        assert await job_queue.dead_letters(MESSAGES_QUEUE) == []

    async def test_dead_letter_after_attempts(self, job_queue):
        handler = FlakyHandler(failures=100)
        exhausted = []

        async def on_exhausted(job, error):
            exhausted.append((job.id, str(error)))

        pool = WorkerPool(job_queue, MESSAGES_QUEUE, {"send": handler}, on_exhausted=on_exhausted)
        job = await job_queue.enqueue(MESSAGES_QUEUE, "send", {})

        await run_all(pool, job_queue)

        assert handler.calls == 3
        [dead] = await job_queue.dead_letters(MESSAGES_QUEUE)
        assert dead.id == job.id
        assert dead.last_error == "provider unavailable"
        assert exhausted == [(job.id, "provider unavailable")]

    @pytest.mark.parametrize(
        "error",
        [UnrecoverableJobError("bad payload"), PermanentDeliveryError("no channel")],
    )
    async def test_unrecoverable_skips_retries(self, job_queue, error):
        handler = FlakyHandler(failures=100, error=error)
        pool = WorkerPool(job_queue, WEBHOOKS_QUEUE, {"process": handler})
        await job_queue.enqueue(WEBHOOKS_QUEUE, "process", {})

        await run_all(pool, job_queue)

        assert handler.calls == 1
        assert len(await job_queue.dead_letters(WEBHOOKS_QUEUE)) == 1

    async def test_unknown_job_is_dead_lettered_without_hook(self, job_queue):
        exhausted = []

        async def on_exhausted(job, error):
            exhausted.append(job)

        pool = WorkerPool(job_queue, AI_QUEUE, {}, on_exhausted=on_exhausted)
        await job_queue.enqueue(AI_QUEUE, "translate", {})

        await pool.run_until_empty()

        [dead] = await job_queue.dead_letters(AI_QUEUE)
        assert "translate" in dead.last_error
        assert exhausted == []

    async def test_failing_hook_still_dead_letters(self, job_queue):
        async def on_exhausted(job, error):
            raise RuntimeError("hook broke")

        pool = WorkerPool(
            job_queue,
            MESSAGES_QUEUE,
            {"send": FlakyHandler(error=PermanentDeliveryError("x"), failures=1)},
            on_exhausted=on_exhausted,
        )
        await job_queue.enqueue(MESSAGES_QUEUE, "send", {})

        await pool.run_until_empty()

        assert len(await job_queue.dead_letters(MESSAGES_QUEUE)) == 1

    async def test_job_context_is_set_and_cleared(self, job_queue):
        seen = {}

        async def handler(job):
            seen["job"] = get_current_job_context()
            seen["tenant"] = get_current_tenant_context()

        pool = WorkerPool(job_queue, AI_QUEUE, {"sentiment": handler})
        job = await job_queue.enqueue(AI_QUEUE, "sentiment", {"tenantId": "tenant-acme"})

        await pool.run_until_empty()

        assert seen == {"job": job.id, "tenant": "tenant-acme"}
        assert get_current_job_context() is None


class TestLifecycle:
    async def test_runs_concurrently_and_drains(self, job_queue):
        started = asyncio.Event()
        release = asyncio.Event()
        running = 0
        peak = 0

        async def slow(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            started.set()
            await release.wait()
            running -= 1

        pool = WorkerPool(job_queue, AI_QUEUE, {"suggest": slow}, concurrency=2, poll_interval=0.05)
        for _ in range(4):
            await job_queue.enqueue(AI_QUEUE, "suggest", {})

        pool.start()
        await asyncio.wait_for(started.wait(), timeout=1)
        await asyncio.sleep(0.05)
        assert pool.active_jobs == 2

        release.set()
        await asyncio.sleep(0.1)
        await pool.stop(timeout=1)

        assert peak == 2
        assert not pool.is_running
        assert len(await job_queue.completed(AI_QUEUE)) == 4

    async def test_stop_waits_for_in_flight_job(self, job_queue):
        finished = asyncio.Event()

        async def handler(job):
            await asyncio.sleep(0.1)
            finished.set()

        pool = WorkerPool(job_queue, AI_QUEUE, {"chatbot": handler}, concurrency=1, poll_interval=0.05)
        await job_queue.enqueue(AI_QUEUE, "chatbot", {})
        pool.start()
        await asyncio.sleep(0.02)

        await pool.stop(timeout=1)

        assert finished.is_set()
        assert len(await job_queue.completed(AI_QUEUE)) == 1


class TestStalledJobs:
    async def test_stalled_job_is_redelivered(self):
        job_queue = MemoryJobQueue(visibility_timeout=0)
        pool = WorkerPool(job_queue, MESSAGES_QUEUE, {"send": FlakyHandler()})
        job = await job_queue.enqueue(MESSAGES_QUEUE, "send", {})
        await job_queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert await pool.recover_stalled() == 0

        redelivered = await job_queue.dequeue(MESSAGES_QUEUE, timeout=0)
        assert redelivered.id == job.id
        assert redelivered.attempts_made == 2

    async def test_live_lease_is_left_alone(self, job_queue):
        pool = WorkerPool(job_queue, MESSAGES_QUEUE, {"send": FlakyHandler()})
        await job_queue.enqueue(MESSAGES_QUEUE, "send", {})
        await job_queue.dequeue(MESSAGES_QUEUE, timeout=0)

        assert await pool.recover_stalled() == 0
        assert await job_queue.dequeue(MESSAGES_QUEUE, timeout=0) is None

    async def test_stalling_on_every_attempt_dead_letters(self):
        job_queue = MemoryJobQueue(visibility_timeout=0)
        exhausted = []

        async def on_exhausted(job, error):
            exhausted.append((job.id, type(error)))

        pool = WorkerPool(
            job_queue, MESSAGES_QUEUE, {"send": FlakyHandler()}, on_exhausted=on_exhausted
        )
        job = await job_queue.enqueue(MESSAGES_QUEUE, "send", {})

        for _ in range(QUEUES[MESSAGES_QUEUE].retry.attempts):
            assert (await job_queue.dequeue(MESSAGES_QUEUE, timeout=0)).id == job.id
            await pool.recover_stalled()

        [dead] = await job_queue.dead_letters(MESSAGES_QUEUE)
        assert dead.id == job.id
        assert dead.attempts_made == QUEUES[MESSAGES_QUEUE].retry.attempts
        assert "stalled" in dead.last_error
        assert exhausted == [(job.id, JobStalledError)]
        assert await job_queue.dequeue(MESSAGES_QUEUE, timeout=0) is None
