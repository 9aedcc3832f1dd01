"""
Rules Application Services
==========================

Matching, execution and bulk running of ticket processing rules.

Each execution attempt runs inside one unit of work: the action, its audit
entry, the execution record and the rule statistics commit together or not
at all. Failures are recorded in a fresh unit of work and never propagate
to the caller.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional, Protocol

from serviflow.config import (
    ExecutionResult,
    NotificationType,
    SearchTarget,
    Severity,
    TicketStatus,
)
from serviflow.core.clock import Clock, ensure_utc, utcnow
from serviflow.core.exceptions import ResourceNotFoundException, RuleActionError
from serviflow.rules.domain import (
    ActionResult,
    AddTagAction,
    AddToMonitoringAction,
    AssignToExpertAction,
    BatchJob,
    BatchResult,
    CircuitBreaker,
    CreateForCustomerAction,
    DeleteTicketAction,
    RetryPolicy,
    RuleAction,
    RuleExecutionOutcome,
    SetPriorityAction,
    SetSLADeadlinesAction,
    SetSLADefinitionAction,
    SetStatusAction,
    TicketRule,
    chunked,
    is_transient_error,
)
from serviflow.shared.infrastructure.engine_config import EngineConfig
from serviflow.shared.infrastructure.logging import get_tenant_logger


# ========== Repository Interfaces ==========

class IRuleRepository(ABC):
    """Rules, their statistics and the execution log."""

    @abstractmethod
    async def get_rule(self, rule_id: int) -> Optional[TicketRule]:
        pass

    @abstractmethod
    async def list_enabled(self) -> List[TicketRule]:
        pass

    @abstractmethod
    async def record_trigger(self, rule_id: int, at: datetime) -> None:
        pass

    @abstractmethod
    async def add_execution(
        self,
        rule_id: int,
        ticket_id: int,
        action_taken: str,
        result: ExecutionResult,
        error_message: Optional[str],
        executed_at: datetime,
    ) -> None:
        pass

    @abstractmethod
    async def execution_history(self, rule_id: int, limit: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def statistics(self, since: datetime) -> Dict[str, Any]:
        pass


class IRuleTicketRepository(ABC):
    """Ticket reads and writes needed by rule actions."""

    @abstractmethod
    async def get_ticket(self, ticket_id: int) -> Optional[Any]:
        pass

    @abstractmethod
    async def create_ticket(self, **fields: Any) -> Any:
        pass

    @abstractmethod
    async def delete_ticket(self, ticket: Any) -> None:
        pass

    @abstractmethod
    async def search_candidates(self, rule: TicketRule, limit: int) -> List[Any]:
        """Tickets whose text may match the rule, newest first."""
        pass


class IActivityRepository(ABC):

    @abstractmethod
    async def add(
        self,
        ticket_id: int,
        activity_type: str,
        description: str,
        event_key: str,
        meta: dict,
        created_at: datetime,
    ) -> None:
        pass


class IRuleUnitOfWork(Protocol):
    rules: IRuleRepository
    tickets: IRuleTicketRepository
    activity: IActivityRepository
    notifications: Any


UnitOfWorkFactory = Callable[[str], AsyncContextManager[IRuleUnitOfWork]]
"""Opens a unit of work on a tenant store; commits on clean exit."""

Sleep = Callable[[float], Awaitable[None]]


# ========== Matching ==========

class RuleMatcher:
    """Substring predicate of a rule over a ticket's title and body."""

    @staticmethod
    def matches(rule: TicketRule, title: Optional[str], body: Optional[str]) -> bool:
        needle = rule.search_text or ""
        if not needle:
            return False

        target = SearchTarget(rule.search_in)
        haystacks = []
        if target in (SearchTarget.TITLE, SearchTarget.BOTH):
            haystacks.append(title or "")
        if target in (SearchTarget.BODY, SearchTarget.BOTH):
            haystacks.append(body or "")

        if not rule.case_sensitive:
            needle = needle.lower()
            haystacks = [h.lower() for h in haystacks]
        return any(needle in h for h in haystacks)

    async def find_matching_tickets(
        self,
        tickets: IRuleTicketRepository,
        rule: TicketRule,
        limit: int = 100,
    ) -> List[Any]:
        """
        Matching tickets of the tenant, newest first, at most ``limit``.

        The store does a coarse substring prefilter; the exact predicate is
        applied here so case sensitivity is identical on every backend.
        """
        if not rule.search_text:
            return []
        candidates = await tickets.search_candidates(rule, limit)
        return [t for t in candidates if self.matches(rule, t.title, t.description)][:limit]


# ========== Execution ==========

class RuleActionExecutor:
    """
    Applies one rule to one ticket of a tenant.

    ``apply_action`` is the single dispatch point over the action union.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, tenant_code: str, clock: Clock = utcnow):
        self._uow_factory = uow_factory
        self.tenant_code = tenant_code
        self._clock = clock
        self._logger = get_tenant_logger(__name__, tenant_code)

    async def execute_rule_on_ticket(
        self,
        rule_id: int,
        ticket_id: int,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> RuleExecutionOutcome:
        attempts = 0

        async def attempt() -> RuleExecutionOutcome:
            nonlocal attempts
            attempts += 1
            return await self._attempt(rule_id, ticket_id)

        try:
            outcome = await retry_policy.run(attempt) if retry_policy else await attempt()
        except Exception as e:
            transient = is_transient_error(e)
            self._logger.warning(
                "Rule execution failed",
                extra={
                    "rule_id": rule_id,
                    "ticket_id": ticket_id,
                    "attempts": attempts,
                    "transient": transient,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            await self._record_failure(rule_id, ticket_id, str(e))
            return RuleExecutionOutcome(
                rule_id=rule_id,
                ticket_id=ticket_id,
                result=ExecutionResult.FAILURE,
                action_taken="unknown",
                error=str(e),
                transient=transient,
                attempts=attempts,
            )

        outcome.attempts = attempts
        return outcome

    async def _attempt(self, rule_id: int, ticket_id: int) -> RuleExecutionOutcome:
        async with self._uow_factory(self.tenant_code) as uow:
            rule = await uow.rules.get_rule(rule_id)
            if rule is None:
                raise ResourceNotFoundException("TicketRule", str(rule_id))
            if not rule.enabled:
                return RuleExecutionOutcome(
                    rule_id=rule_id,
                    ticket_id=ticket_id,
                    result=ExecutionResult.SKIPPED,
                    message="Rule is disabled",
                )

            ticket = await uow.tickets.get_ticket(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", str(ticket_id))

            action = rule.action()
            now = self._clock()
            applied = await self.apply_action(uow, action, ticket, now)

            await uow.activity.add(
                ticket_id=ticket_id,
                activity_type=applied.activity_type,
                description=f"{applied.message} (Rule: {rule.name})",
                event_key=applied.event_key,
                meta={
                    "ruleId": rule.id,
                    "ruleName": rule.name,
                    "actionType": rule.action_type,
                    "params": rule.action_params,
                    **applied.details,
                },
                created_at=now,
            )
            await uow.rules.add_execution(
                rule_id, ticket_id, rule.action_type, ExecutionResult.SUCCESS, None, now
            )
            await uow.rules.record_trigger(rule_id, now)

        self._logger.info(
            "Rule applied",
            extra={"rule_id": rule_id, "ticket_id": ticket_id, "action_type": rule.action_type}
        )
        return RuleExecutionOutcome(
            rule_id=rule_id,
            ticket_id=ticket_id,
            result=ExecutionResult.SUCCESS,
            action_taken=rule.action_type,
            message=applied.message,
        )

    async def _record_failure(self, rule_id: int, ticket_id: int, error: str) -> None:
        try:
            async with self._uow_factory(self.tenant_code) as uow:
                await uow.rules.add_execution(
                    rule_id, ticket_id, "unknown", ExecutionResult.FAILURE, error, self._clock()
                )
        except Exception as e:
            self._logger.error(
                "Could not record rule execution failure",
                extra={"rule_id": rule_id, "ticket_id": ticket_id, "error": str(e)}
            )

    async def apply_action(
        self,
        uow: IRuleUnitOfWork,
        action: RuleAction,
        ticket: Any,
        now: datetime,
    ) -> ActionResult:
        ticket_id = ticket.id

        match action:
            case DeleteTicketAction():
                await uow.tickets.delete_ticket(ticket)
                return ActionResult(f"Ticket #{ticket_id} deleted", "ticket.deleted", "deleted")

            case AssignToExpertAction(expert_id=expert_id, expert_name=expert_name):
                ticket.assignee_id = expert_id
                if ticket.status == TicketStatus.OPEN.value:
                    ticket.status = TicketStatus.IN_PROGRESS.value
                ticket.updated_at = now
                return ActionResult(
                    f"Ticket #{ticket_id} assigned to {expert_name or 'expert'}",
                    "ticket.assigned",
                    "assigned",
                    {"expertId": expert_id},
                )

            case CreateForCustomerAction(customer_id=customer_id):
                forked = await uow.tickets.create_ticket(
                    title=f"[Forwarded] {ticket.title}",
                    description=f"Forwarded from ticket #{ticket_id}:\n\n{ticket.description}",
                    priority=ticket.priority,
                    status=TicketStatus.OPEN.value,
                    requester_id=customer_id,
                    created_at=now,
                    updated_at=now,
                )
                ticket.updated_at = now
                return ActionResult(
                    f"New ticket #{forked.id} created for customer",
                    "ticket.forwarded",
                    details={"newTicketId": forked.id, "customerId": customer_id},
                )

            case SetPriorityAction(priority=priority):
                ticket.priority = priority
                ticket.updated_at = now
                return ActionResult(f"Ticket #{ticket_id} priority set to {priority}", "ticket.priority.changed")

            case SetStatusAction(status=status):
                ticket.status = status
                ticket.updated_at = now
                return ActionResult(f"Ticket #{ticket_id} status set to {status}", "ticket.status.changed")

            case AddTagAction(tag=tag):
                tag = tag.strip()
                tags = [t.strip() for t in (ticket.tags or "").split(",") if t.strip()]
                if tag not in tags:
                    tags.append(tag)
                ticket.tags = ",".join(tags)
                ticket.updated_at = now
                return ActionResult(f'Tag "{tag}" added to ticket #{ticket_id}', "ticket.tag.added")

            case AddToMonitoringAction():
                existing = dict(ticket.source_metadata or {})
                merged = {
                    **existing,
                    "monitoring": True,
                    "type": action.type or existing.get("type") or "monitoring",
                    "reason": "ticket_rule_action",
                    "classified_as": action.classified_as or existing.get("classified_as") or "alert",
                    "added_via": "ticket_processing_rule",
                    "added_at": now.isoformat(),
                }
                if action.normalised is not None:
                    merged["normalised"] = action.normalised
                ticket.source_metadata = merged
                ticket.updated_at = now
                return ActionResult(
                    f"Ticket #{ticket_id} added to system monitoring sources", "ticket.monitoring.set"
                )

            case SetSLADeadlinesAction(response_due_at=response_due_at, resolve_due_at=resolve_due_at):
                if response_due_at is not None:
                    ticket.response_due_at = ensure_utc(response_due_at)
                if resolve_due_at is not None:
                    ticket.resolve_due_at = ensure_utc(resolve_due_at)
                ticket.updated_at = now
                return ActionResult(f"Ticket #{ticket_id} SLA deadlines updated", "ticket.sla.deadlines")

            case SetSLADefinitionAction(sla_definition_id=sla_definition_id, sla_source=sla_source):
                ticket.sla_definition_id = sla_definition_id
                ticket.sla_source = sla_source
                ticket.sla_applied_at = now
                ticket.updated_at = now
                return ActionResult(f"Ticket #{ticket_id} SLA definition set", "ticket.sla.applied")

            case _:
                raise RuleActionError(f"Unsupported action: {action!r}", ticket_id=ticket_id)


# ========== Bulk runs ==========

class BatchRunner:
    """
    Runs one rule over a list of tickets in paced chunks.

    Tickets are attempted one at a time under a RetryPolicy; a
    CircuitBreaker over the whole run stops it after repeated transient
    failures.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        config_provider: Callable[[], EngineConfig],
        executor_cls: type = RuleActionExecutor,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._uow_factory = uow_factory
        self._config_provider = config_provider
        self._executor_cls = executor_cls
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic

    async def run(self, job: BatchJob) -> BatchResult:
        tuning = self._config_provider().rules
        logger = get_tenant_logger(__name__, job.tenant_code)
        executor = self._executor_cls(self._uow_factory, job.tenant_code, clock=self._clock)
        retry = RetryPolicy(tuning.retry_max_attempts, tuning.retry_delay_seconds, sleep=self._sleep)
        breaker = CircuitBreaker(tuning.circuit_breaker_threshold)

        result = BatchResult()
        started = self._monotonic()
        chunks = list(chunked(job.ticket_ids, job.batch_size))

        logger.info(
            "Rule batch started",
            extra={"rule_id": job.rule_id, "ticket_count": len(job.ticket_ids), "chunks": len(chunks)}
        )

        for index, chunk in enumerate(chunks):
            for ticket_id in breaker.guard(chunk):
                outcome = await executor.execute_rule_on_ticket(job.rule_id, ticket_id, retry_policy=retry)
                breaker.record(outcome)
                if outcome.result == ExecutionResult.SUCCESS:
                    result.success_count += 1
                elif outcome.result == ExecutionResult.SKIPPED:
                    result.skipped_count += 1
                else:
                    result.error_count += 1
                    result.errors.append(f"Ticket #{ticket_id}: {outcome.error}")

            if breaker.is_open:
                result.circuit_broken = True
                result.errors.append(
                    f"Circuit breaker triggered after {breaker.failure_count} consecutive connection failures"
                )
                logger.error(
                    "Rule batch aborted by circuit breaker",
                    extra={"rule_id": job.rule_id, "processed": result.processed}
                )
                break
            if index < len(chunks) - 1:
                await self._sleep(job.batch_delay_seconds)

        result.duration_seconds = self._monotonic() - started
        logger.info(
            "Rule batch finished",
            extra={
                "rule_id": job.rule_id,
                "success_count": result.success_count,
                "error_count": result.error_count,
                "skipped_count": result.skipped_count,
                "circuit_broken": result.circuit_broken,
            }
        )
        return result


class CompletionNotifier:
    """Writes the single completion notification of a bulk run."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        config_provider: Callable[[], EngineConfig],
        clock: Clock = utcnow,
    ):
        self._uow_factory = uow_factory
        self._config_provider = config_provider
        self._clock = clock

    async def notify(
        self,
        job: BatchJob,
        result: Optional[BatchResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if error is not None or result is None:
            severity = Severity.CRITICAL
            message = f'Rule "{job.rule_name}" failed: {error}'
            payload = {"rule_id": job.rule_id, "error": str(error), "user_id": job.user_id}
        else:
            if result.circuit_broken:
                severity = Severity.CRITICAL
            elif result.error_count == 0:
                severity = Severity.INFO
            else:
                severity = Severity.WARNING
            message = (
                f'Rule "{job.rule_name}" completed: {result.success_count} succeeded, '
                f"{result.error_count} failed, {result.skipped_count} skipped"
            )
            if result.circuit_broken:
                message += " (stopped by circuit breaker)"
            payload = result.summary_payload(job, self._config_provider().rules.completion_error_limit)

        async with self._uow_factory(job.tenant_code) as uow:
            await uow.notifications.add(
                None,
                NotificationType.RULE_EXECUTION_COMPLETE.value,
                severity.value,
                message,
                payload,
                created_at=self._clock(),
            )

        get_tenant_logger(__name__, job.tenant_code).info(
            "Rule completion notification written",
            extra={"rule_id": job.rule_id, "severity": severity.value}
        )


# ========== Facade ==========

class RuleService:
    """Rule operations for one tenant."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        tenant_code: str,
        config_provider: Callable[[], EngineConfig],
        executor_cls: type = RuleActionExecutor,
        clock: Clock = utcnow,
    ):
        self._uow_factory = uow_factory
        self.tenant_code = tenant_code
        self._config_provider = config_provider
        self._clock = clock
        self.matcher = RuleMatcher()
        self.executor = executor_cls(uow_factory, tenant_code, clock=clock)
        self._logger = get_tenant_logger(__name__, tenant_code)

    async def _require_rule(self, uow: IRuleUnitOfWork, rule_id: int) -> TicketRule:
        rule = await uow.rules.get_rule(rule_id)
        if rule is None:
            raise ResourceNotFoundException("TicketRule", str(rule_id))
        return rule

    async def execute_rule(self, rule_id: int, ticket_id: int) -> RuleExecutionOutcome:
        async with self._uow_factory(self.tenant_code) as uow:
            await self._require_rule(uow, rule_id)
        return await self.executor.execute_rule_on_ticket(rule_id, ticket_id)

    async def execute_all_rules_on_ticket(self, ticket_id: int) -> List[RuleExecutionOutcome]:
        """Run every enabled, matching rule against a newly created ticket."""
        async with self._uow_factory(self.tenant_code) as uow:
            ticket = await uow.tickets.get_ticket(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("Ticket", str(ticket_id))
            title, body = ticket.title, ticket.description
            rules = await uow.rules.list_enabled()

        outcomes = []
        for rule in rules:
            if not self.matcher.matches(rule, title, body):
                continue
            outcome = await self.executor.execute_rule_on_ticket(rule.id, ticket_id)
            outcomes.append(outcome)
            if outcome.succeeded and rule.action_type == "delete":
                break
        return outcomes

    async def test_rule(self, rule_id: int) -> Dict[str, Any]:
        """Dry run: which tickets would the rule touch."""
        limit = self._config_provider().rules.match_limit
        async with self._uow_factory(self.tenant_code) as uow:
            rule = await self._require_rule(uow, rule_id)
            matched = await self.matcher.find_matching_tickets(uow.tickets, rule, limit)
            tickets = [
                {"id": t.id, "title": t.title, "status": t.status, "created_at": ensure_utc(t.created_at)}
                for t in matched
            ]
        return {
            "rule_id": rule.id,
            "rule_name": rule.name,
            "ticket_count": len(tickets),
            "tickets": tickets,
        }

    async def execution_history(self, rule_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        async with self._uow_factory(self.tenant_code) as uow:
            await self._require_rule(uow, rule_id)
            return await uow.rules.execution_history(rule_id, limit)

    async def statistics(self) -> Dict[str, Any]:
        async with self._uow_factory(self.tenant_code) as uow:
            return await uow.rules.statistics(self._clock() - timedelta(hours=24))

    async def run_rule_in_background(
        self,
        rule_id: int,
        user_id: Optional[int],
        schedule: Callable[[BatchJob], Any],
        batch_size: int = 5,
        batch_delay_seconds: float = 3.0,
    ) -> Dict[str, Any]:
        """
        Count matches now and hand the bulk run to ``schedule``.

        Returns immediately; the outcome arrives later as a completion
        notification.
        """
        limit = self._config_provider().rules.match_limit
        async with self._uow_factory(self.tenant_code) as uow:
            rule = await self._require_rule(uow, rule_id)
            if not rule.enabled:
                raise RuleActionError("Rule is disabled", rule_id=rule_id)
            rule.action()
            matched = await self.matcher.find_matching_tickets(uow.tickets, rule, limit)

        if not matched:
            return {
                "ticket_count": 0,
                "started": False,
                "rule_name": rule.name,
                "message": "No matching tickets found",
            }

        job = BatchJob(
            tenant_code=self.tenant_code,
            rule_id=rule.id,
            rule_name=rule.name,
            ticket_ids=[t.id for t in matched],
            user_id=user_id,
            batch_size=batch_size,
            batch_delay_seconds=batch_delay_seconds,
        )
        schedule(job)
        self._logger.info(
            "Rule batch scheduled",
            extra={"rule_id": rule.id, "ticket_count": len(job.ticket_ids), "user_id": user_id}
        )
        return {
            "ticket_count": len(job.ticket_ids),
            "started": True,
            "rule_name": rule.name,
            "message": f"Processing {len(job.ticket_ids)} tickets in the background",
        }
