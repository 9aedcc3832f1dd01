"""
SLA Cycle Trigger
=================

APScheduler job that fires the SLA notification cycle on a fixed tick.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from serviflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

CYCLE_JOB_ID = "sla_notification_cycle"

CycleFunc = Callable[[], Awaitable[object]]


class SLAScheduler:
    """
    Fixed-interval trigger for the SLA notification cycle.

    The tick ignores per-tenant check intervals; the cycle itself decides
    which tenants are due. Up to ``max_instances`` ticks may overlap so a
    fresh tick can reach the cycle's stuck-run takeover. The cycle's own
    run guard decides whether a tick does any work.
    """

    def __init__(self, interval_seconds: int = 180, max_instances: int = 2):
        self.interval_seconds = interval_seconds
        self.max_instances = max_instances
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._cycle: Optional[CycleFunc] = None

    async def _tick(self) -> None:
        try:
            await self._cycle()
        except Exception as e:
            # APScheduler would only log a bare traceback
            logger.error(
                "SLA cycle crashed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )

    async def start(self, cycle: CycleFunc) -> None:
        """Schedule ``cycle`` every ``interval_seconds``; a second start is ignored."""
        if self.is_running:
            logger.warning("SLA scheduler already running")
            return

        self._cycle = cycle
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=self.interval_seconds,
            id=CYCLE_JOB_ID,
            name="SLA notification cycle",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=self.max_instances,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds, "max_instances": self.max_instances}
        )

    async def stop(self) -> None:
        """Remove the tick without waiting for an in-flight cycle."""
        if not self.is_running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def next_run_at(self) -> Optional[datetime]:
        if not self.is_running:
            return None
        job = self._scheduler.get_job(CYCLE_JOB_ID)
        return job.next_run_time if job else None
