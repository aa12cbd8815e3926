"""
Bounded-concurrency worker pool for one queue.

Each pool runs ``concurrency`` loops that lease jobs, route them by name to a
handler and acknowledge the outcome:

- success -> ``complete``
- ``UnrecoverableJobError`` / ``PermanentDeliveryError`` -> dead-letter, no retry
- any other exception -> ``retry`` with the job's backoff until attempts run out,
  then the exhausted hook and dead-letter

``stop`` lets in-flight jobs finish before returning.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from conduit.core.config.settings import settings
from conduit.core.logging.context import clear_job_context, set_job_context
from conduit.core.logging.logger import get_logger
from conduit.domain.errors import (
    JobStalledError,
    PermanentDeliveryError,
    UnknownJobError,
    UnrecoverableJobError,
)
from conduit.domain.interfaces.queue_interface import IJobQueue
from conduit.workers.job import Job
from conduit.workers.queues import get_queue_config

logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
ExhaustedHook = Callable[[Job, Exception], Awaitable[None]]

_NO_RETRY = (UnrecoverableJobError, PermanentDeliveryError)

# How often a running pool returns expired leases to the waiting set
STALL_CHECK_INTERVAL = 30.0


def describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


class WorkerPool:
    """
    Args:
        queue: Job queue backend
        queue_name: Queue this pool consumes
        handlers: Job name -> coroutine handler
        concurrency: Parallel jobs; queue default when None
        on_exhausted: Called once when a job is dead-lettered after a
            handler failure (not for unknown job names)
        poll_interval: Seconds each loop waits for a job before checking
            for shutdown
    """

    def __init__(
        self,
        queue: IJobQueue,
        queue_name: str,
        handlers: dict[str, JobHandler],
        concurrency: int | None = None,
        on_exhausted: ExhaustedHook | None = None,
        poll_interval: float | None = None,
    ):
        self.queue = queue
        self.queue_name = queue_name
        self.handlers = dict(handlers)
        self.concurrency = concurrency or get_queue_config(queue_name).concurrency
        self.on_exhausted = on_exhausted
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.queue_poll_interval
        )

        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._active = 0

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def active_jobs(self) -> int:
        return self._active

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker_loop(), name=f"{self.queue_name}-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._tasks.append(
            asyncio.create_task(self._stall_loop(), name=f"{self.queue_name}-stall-check")
        )
        logger.info(f"Started {self.queue_name} pool (concurrency={self.concurrency})")

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop leasing new jobs and wait for in-flight ones.

        Jobs still running after ``timeout`` are cancelled; their leases expire
        and ``recover_stalled`` hands them to the next worker.
        """
        if not self._tasks:
            return
        self._stopping.set()
        logger.info(f"Draining {self.queue_name} pool ({self._active} job(s) in flight)")

        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"Cancelled {len(pending)} {self.queue_name} task(s) after {timeout}s"
            )
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info(f"Stopped {self.queue_name} pool")

    async def _worker_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.dequeue(self.queue_name, timeout=self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dequeue from {self.queue_name} failed: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)
                continue
            if job is not None:
                await self.process(job)

    async def _stall_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.recover_stalled()
            except Exception as e:
                logger.error(f"Stall check on {self.queue_name} failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=STALL_CHECK_INTERVAL)
            except TimeoutError:
                pass

    async def recover_stalled(self) -> int:
        """
        Requeue expired leases and dead-letter the jobs that stalled on their
        last attempt, running the exhausted hook for each.

        Returns:
            Number of jobs dead-lettered
        """
        exhausted = await self.queue.recover_stalled(self.queue_name)
        for job in exhausted:
            set_job_context(job_id=job.id, tenant_id=job.payload.get("tenantId"))
            try:
                await self._handle_failure(job, JobStalledError(job.id, job.attempts_made))
            finally:
                clear_job_context()
        return len(exhausted)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def process(self, job: Job) -> bool:
        """
        Run one leased job and acknowledge it.

        Returns:
            True if the handler succeeded
        """
        set_job_context(job_id=job.id, tenant_id=job.payload.get("tenantId"))
        self._active += 1
        try:
            handler = self.handlers.get(job.name)
            if handler is None:
                raise UnknownJobError(self.queue_name, job.name)
            await handler(job)
        except Exception as e:
            await self._handle_failure(job, e)
            return False
        else:
            await self.queue.complete(job)
            logger.debug(f"Completed {self.queue_name}:{job.name}")
            return True
        finally:
            self._active -= 1
            clear_job_context()

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        message = describe_error(error)

        if not isinstance(error, _NO_RETRY) and job.retry.can_retry(job.attempts_made):
            delay = job.retry.backoff_delay(job.attempts_made)
            logger.warning(
                f"{self.queue_name}:{job.name} failed "
                f"(attempt {job.attempts_made}/{job.retry.attempts}), "
                f"retrying in {delay:.1f}s: {message}"
            )
            await self.queue.retry(job, delay, message)
            return

        if isinstance(error, UnknownJobError):
            logger.error(message)
        else:
            logger.error(
                f"{self.queue_name}:{job.name} failed permanently after "
                f"{job.attempts_made} attempt(s): {message}"
            )
            if self.on_exhausted is not None:
                try:
                    await self.on_exhausted(job, error)
                except Exception as hook_error:
                    logger.exception(
                        f"Exhausted hook for {self.queue_name}:{job.name} failed: {hook_error}"
                    )
        await self.queue.fail(job, message)

    async def run_until_empty(self, max_jobs: int = 10_000) -> int:
        """
        Process runnable jobs one at a time until none is left.

        Delayed jobs are not waited for. Used by the CLI's drain mode and tests.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while processed < max_jobs:
            job = await self.queue.dequeue(self.queue_name, timeout=0)
            if job is None:
                break
            await self.process(job)
            processed += 1
        return processed
