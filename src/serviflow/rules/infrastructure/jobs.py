"""
Background Job Queue
====================

Bounded in-process queue for bulk rule runs.

A fixed number of worker tasks take jobs off the queue and run them. Each
finished job, successful or not, posts ``(job, result, error)`` to a result
channel. A single listener drains the channel and hands every entry to the
completion callback, so each accepted job produces exactly one completion.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple

from serviflow.core.exceptions import JobQueueFullError
from serviflow.rules.domain import BatchJob, BatchResult
from serviflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JobHandler = Callable[[BatchJob], Awaitable[BatchResult]]
CompletionHandler = Callable[[BatchJob, Optional[BatchResult], Optional[BaseException]], Awaitable[None]]
JobOutcome = Tuple[BatchJob, Optional[BatchResult], Optional[BaseException]]


class BackgroundJobQueue:
    """Bounded asyncio job queue with a worker pool and a result channel."""

    def __init__(
        self,
        handler: JobHandler,
        on_complete: CompletionHandler,
        maxsize: int = 100,
        workers: int = 1,
    ):
        self._handler = handler
        self._on_complete = on_complete
        self.maxsize = maxsize
        self.worker_count = max(1, workers)
        self._jobs: asyncio.Queue[BatchJob] = asyncio.Queue(maxsize=maxsize)
        self._results: asyncio.Queue[JobOutcome] = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    @property
    def is_full(self) -> bool:
        return self._jobs.full()

    @property
    def pending(self) -> int:
        return self._jobs.qsize()

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"rule-job-worker-{i}")
            for i in range(self.worker_count)
        ]
        self._tasks.append(asyncio.create_task(self._listen(), name="rule-job-results"))
        logger.info("Background job queue started", extra={"workers": self.worker_count, "maxsize": self.maxsize})

    async def stop(self) -> None:
        """Cancel workers and the listener; queued jobs are dropped."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Background job queue stopped")

    def submit(self, job: BatchJob) -> None:
        """Accept a job or raise JobQueueFullError."""
        try:
            self._jobs.put_nowait(job)
        except asyncio.QueueFull:
            raise JobQueueFullError(self.maxsize)
        logger.info(
            "Rule job queued",
            extra={"tenant_code": job.tenant_code, "rule_id": job.rule_id, "pending": self._jobs.qsize()}
        )

    async def enqueue(self, job: BatchJob) -> None:
        """
        Submit from a fire-and-forget context.

        A job rejected here still completes, as a hard failure.
        """
        try:
            self.submit(job)
        except JobQueueFullError as e:
            logger.error(
                "Rule job rejected, queue full",
                extra={"tenant_code": job.tenant_code, "rule_id": job.rule_id}
            )
            self._results.put_nowait((job, None, e))

    async def join(self) -> None:
        """Wait until every queued job and its completion have been handled."""
        await self._jobs.join()
        await self._results.join()

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._jobs.get()
            try:
                result = await self._handler(job)
                self._results.put_nowait((job, result, None))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Rule job failed",
                    extra={
                        "worker": index,
                        "tenant_code": job.tenant_code,
                        "rule_id": job.rule_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                self._results.put_nowait((job, None, e))
            finally:
                self._jobs.task_done()

    async def _listen(self) -> None:
        while True:
            job, result, error = await self._results.get()
            try:
                await self._on_complete(job, result, error)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Could not write rule job completion",
                    extra={"tenant_code": job.tenant_code, "rule_id": job.rule_id, "error": str(e)}
                )
            finally:
                self._results.task_done()
