"""
Rule Job Wiring
===============

Connects the background job queue to the tenant stores: workers run
bulk rule jobs with a BatchRunner and the result listener writes the
completion notification.
"""

import asyncio
from typing import Callable, Optional

from serviflow.core.clock import Clock, utcnow
from serviflow.infrastructure.database import TenantDatabaseManager
from serviflow.rules.application.services import BatchRunner, CompletionNotifier, RuleActionExecutor
from serviflow.rules.domain import BatchJob, BatchResult
from serviflow.rules.infrastructure.jobs import BackgroundJobQueue
from serviflow.rules.infrastructure.repositories import rule_unit_of_work_factory
from serviflow.shared.infrastructure.engine_config import EngineConfig


class RuleJobProcessor:
    """Job handler and completion handler for one process."""

    def __init__(
        self,
        databases: TenantDatabaseManager,
        config_provider: Callable[[], EngineConfig],
        executor_cls: type = RuleActionExecutor,
        clock: Clock = utcnow,
        sleep=asyncio.sleep,
    ):
        uow_factory = rule_unit_of_work_factory(databases)
        self.runner = BatchRunner(
            uow_factory, config_provider, executor_cls=executor_cls, clock=clock, sleep=sleep
        )
        self.notifier = CompletionNotifier(uow_factory, config_provider, clock=clock)

    async def handle(self, job: BatchJob) -> BatchResult:
        return await self.runner.run(job)

    async def complete(
        self,
        job: BatchJob,
        result: Optional[BatchResult],
        error: Optional[BaseException],
    ) -> None:
        await self.notifier.notify(job, result, error)


def create_rule_job_queue(
    databases: TenantDatabaseManager,
    config_provider: Callable[[], EngineConfig],
    **processor_options,
) -> BackgroundJobQueue:
    tuning = config_provider().rules
    processor = RuleJobProcessor(databases, config_provider, **processor_options)
    return BackgroundJobQueue(
        processor.handle,
        processor.complete,
        maxsize=tuning.job_queue_size,
        workers=tuning.job_workers,
    )
