"""
SLA Notification Scheduler
==========================

Periodic, per-tenant detection of SLA threshold crossings.

One cycle walks the active tenants in registry order. For each tenant it
reads the tenant's settings once, honours the kill switch and the tenant's
own check interval, and then evaluates a bounded batch of open tickets
under a hard timeout. A failing or wedged tenant never stops the cycle.

All mutable scheduler state lives on a SchedulerContext owned by whoever
drives the cycles, so independent schedulers never share state.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from serviflow.core.clock import Clock, utcnow
from serviflow.infrastructure.database import TenantDatabaseManager
from serviflow.infrastructure.tenancy import TenantRegistry, TenantSettings
from serviflow.shared.infrastructure.engine_config import EngineConfig
from serviflow.shared.infrastructure.logging import get_logger, get_tenant_logger, log_latency
from serviflow.sla.application.services import TicketSLAEvaluator
from serviflow.sla.infrastructure.repositories import (
    SQLAlchemyNotificationRepository,
    SQLAlchemyTicketSLARepository,
)

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class SchedulerContext:
    """
    State carried between scheduler cycles.

    The run flag is an in-process advisory mutex. A run holding it for longer
    than ``max_run_seconds`` is treated as stuck and the flag is taken over.
    Each acquisition gets a token so a stuck run finishing late cannot
    release a newer run's flag.
    """
    max_run_seconds: float = 300.0
    running: bool = False
    run_started_at: Optional[float] = None
    run_token: int = 0
    tenant_last_processed: Dict[str, float] = field(default_factory=dict)
    tenant_cursors: Dict[str, int] = field(default_factory=dict)
    abandoned: Dict[str, asyncio.Task] = field(default_factory=dict)

    def try_acquire(self, now: float) -> tuple[Optional[int], bool]:
        """
        Try to start a run at monotonic time ``now``.

        Returns ``(token, forced)``; token is None when the run must be skipped.
        """
        forced = False
        if self.running:
            if self.run_started_at is not None and now - self.run_started_at <= self.max_run_seconds:
                return None, False
            forced = True
        self.running = True
        self.run_started_at = now
        self.run_token += 1
        return self.run_token, forced

    def release(self, token: int) -> None:
        if token == self.run_token:
            self.running = False
            self.run_started_at = None

    def abandon(self, tenant_code: str, task: asyncio.Task) -> None:
        """Keep a timed-out tenant task referenced until it finishes on its own."""
        self.abandoned[tenant_code] = task
        task.add_done_callback(lambda done: self._forget(tenant_code, done))

    def is_abandoned(self, tenant_code: str) -> bool:
        """True while a timed-out pass for the tenant is still running."""
        task = self.abandoned.get(tenant_code)
        return task is not None and not task.done()

    def _forget(self, tenant_code: str, task: asyncio.Task) -> None:
        if self.abandoned.get(tenant_code) is task:
            del self.abandoned[tenant_code]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "Abandoned tenant pass finished with an error",
                extra={"tenant_code": tenant_code, "error": str(task.exception())}
            )


@dataclass
class TenantPassResult:
    """Outcome of one tenant within a cycle."""
    tenant_code: str
    status: str  # processed | disabled | not_due
    tickets_evaluated: int = 0
    notifications_created: int = 0


@dataclass
class CycleSummary:
    skipped_by_mutex: bool = False
    forced_stuck_reset: bool = False
    tenants_seen: int = 0
    tenants_processed: int = 0
    tenants_skipped: int = 0
    tenants_failed: int = 0
    tenants_timed_out: int = 0
    tickets_evaluated: int = 0
    notifications_created: int = 0
    errors: List[str] = field(default_factory=list)


class SLANotificationScheduler:
    """
    Runs scheduler cycles against every active tenant.

    ``clock``, ``monotonic`` and ``sleep`` are injectable so cycles can be
    driven deterministically.
    """

    def __init__(
        self,
        context: SchedulerContext,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        config_provider: Callable[[], EngineConfig],
        tenant_timeout_seconds: float = 60.0,
        clock: Clock = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.context = context
        self._databases = databases
        self._registry = registry
        self._config_provider = config_provider
        self._tenant_timeout = tenant_timeout_seconds
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._in_flight: Set[asyncio.Task] = set()

    async def run_cycle(self) -> CycleSummary:
        token, forced = self.context.try_acquire(self._monotonic())
        if token is None:
            logger.info("SLA cycle skipped, previous run still in progress")
            return CycleSummary(skipped_by_mutex=True)

        current = asyncio.current_task()
        if current is not None:
            self._in_flight.add(current)

        summary = CycleSummary(forced_stuck_reset=forced)
        if forced:
            logger.warning(
                "Previous SLA cycle exceeded its run budget, treating it as stuck",
                extra={"max_run_seconds": self.context.max_run_seconds}
            )

        try:
            tenants = await self._registry.list_active_tenants()
            summary.tenants_seen = len(tenants)
            for tenant_code in tenants:
                await self._run_tenant(tenant_code, summary)
        except Exception as e:
            logger.error("SLA cycle could not list tenants", extra={"error": str(e)})
            summary.errors.append(f"registry: {e}")
        finally:
            self.context.release(token)
            self._in_flight.discard(current)

        logger.info(
            "SLA cycle finished",
            extra={
                "tenants_seen": summary.tenants_seen,
                "tenants_processed": summary.tenants_processed,
                "notifications_created": summary.notifications_created,
                "tenants_failed": summary.tenants_failed,
                "tenants_timed_out": summary.tenants_timed_out,
            }
        )
        return summary

    async def drain(self, timeout: float) -> int:
        """
        Wait up to ``timeout`` seconds for running cycles and abandoned tenant
        passes, so stores are not disposed under them.

        Returns how many were still running when the wait ended.
        """
        pending = set(self._in_flight) | set(self.context.abandoned.values())
        pending.discard(asyncio.current_task())
        if not pending:
            return 0
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                "SLA work still running at shutdown",
                extra={"still_running": len(still_running), "timeout_seconds": timeout}
            )
        return len(still_running)

    async def _run_tenant(self, tenant_code: str, summary: CycleSummary) -> None:
        tenant_logger = get_tenant_logger(__name__, tenant_code)
        if self.context.is_abandoned(tenant_code):
            summary.tenants_skipped += 1
            tenant_logger.warning("Tenant skipped, its timed-out pass is still running")
            return

        task = asyncio.ensure_future(self._tenant_pass(tenant_code))
        done, _ = await asyncio.wait({task}, timeout=self._tenant_timeout)

        if not done:
            self.context.abandon(tenant_code, task)
            summary.tenants_timed_out += 1
            summary.errors.append(f"{tenant_code}: timed out after {self._tenant_timeout}s")
            tenant_logger.error(
                "Tenant SLA pass timed out, abandoning it",
                extra={"timeout_seconds": self._tenant_timeout}
            )
            return

        try:
            result = task.result()
        except Exception as e:
            summary.tenants_failed += 1
            summary.errors.append(f"{tenant_code}: {e}")
            tenant_logger.error(
                "Tenant SLA pass failed",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            return

        if result.status != "processed":
            summary.tenants_skipped += 1
            tenant_logger.debug("Tenant skipped", extra={"reason": result.status})
            return

        self.context.tenant_last_processed[tenant_code] = self._monotonic()
        summary.tenants_processed += 1
        summary.tickets_evaluated += result.tickets_evaluated
        summary.notifications_created += result.notifications_created

    async def _tenant_pass(self, tenant_code: str) -> TenantPassResult:
        settings = await self._registry.get_settings(tenant_code)
        if not settings.sla_processing_enabled:
            return TenantPassResult(tenant_code, "disabled")
        if not self._is_due(tenant_code, settings):
            return TenantPassResult(tenant_code, "not_due")

        tenant_logger = get_tenant_logger(__name__, tenant_code)
        with log_latency(tenant_logger, "tenant_sla_pass"):
            return await self.process_tenant(tenant_code)

    def _is_due(self, tenant_code: str, settings: TenantSettings) -> bool:
        last = self.context.tenant_last_processed.get(tenant_code)
        if last is None:
            return True
        return self._monotonic() - last >= settings.sla_check_interval_seconds

    async def process_tenant(self, tenant_code: str) -> TenantPassResult:
        """
        Evaluate one bounded batch of a tenant's open tickets.

        Batches resume after the last ticket id of the previous pass and wrap
        to the start once a short batch is returned.
        """
        tuning = self._config_provider().scheduler
        result = TenantPassResult(tenant_code, "processed")

        async with self._databases.session(tenant_code) as session:
            tickets = SQLAlchemyTicketSLARepository(session)
            evaluator = TicketSLAEvaluator(tickets, SQLAlchemyNotificationRepository(session))

            cursor = self.context.tenant_cursors.get(tenant_code, 0)
            batch = await tickets.fetch_open_batch(cursor, tuning.batch_size)

            for index, view in enumerate(batch):
                if index:
                    await self._sleep(tuning.ticket_delay_seconds)
                fired = await evaluator.evaluate(tenant_code, view, self._clock())
                await session.commit()
                result.tickets_evaluated += 1
                result.notifications_created += len(fired)

        self.context.tenant_cursors[tenant_code] = (
            batch[-1].id if len(batch) == tuning.batch_size else 0
        )
        return result
