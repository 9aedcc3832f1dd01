"""
Rules Controllers (API Routes)
==============================

Internal FastAPI routes for ticket processing rules: dry run, single
execution, the on-create hook, background bulk runs, history and
statistics.
"""

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status

from serviflow.core.clock import Clock
from serviflow.core.exceptions import JobQueueFullError
from serviflow.infrastructure.database import TenantDatabaseManager
from serviflow.infrastructure.tenancy import TenantRegistry
from serviflow.rules.application import (
    BackgroundRunResponse,
    ExecuteRuleRequest,
    RuleExecutionOutcomeResponse,
    RuleExecutionRecord,
    RuleService,
    RuleStatisticsResponse,
    RuleTestResponse,
    RunInBackgroundRequest,
)
from serviflow.rules.domain import RuleExecutionOutcome
from serviflow.rules.infrastructure import BackgroundJobQueue, rule_unit_of_work_factory
from serviflow.shared.api.dependencies import (
    get_active_tenant,
    get_clock,
    get_config_manager,
    get_tenant_databases,
    get_tenant_registry,
)
from serviflow.shared.infrastructure.engine_config import EngineConfigManager

router = APIRouter(prefix="/rules", tags=["Ticket Rules"])

TENANT_PATH = "/tenants/{tenant_code}"


# ========== Dependencies ==========

def get_rule_service(
    tenant_code: str = Depends(get_active_tenant),
    databases: TenantDatabaseManager = Depends(get_tenant_databases),
    config_manager: EngineConfigManager = Depends(get_config_manager),
    clock: Clock = Depends(get_clock),
) -> RuleService:
    return RuleService(
        rule_unit_of_work_factory(databases),
        tenant_code,
        lambda: config_manager.config,
        clock=clock,
    )


def get_job_queue(request: Request) -> BackgroundJobQueue:
    return request.app.state.job_queue


def _outcome_response(outcome: RuleExecutionOutcome) -> RuleExecutionOutcomeResponse:
    return RuleExecutionOutcomeResponse(
        rule_id=outcome.rule_id,
        ticket_id=outcome.ticket_id,
        result=outcome.result,
        action_taken=outcome.action_taken,
        message=outcome.message,
        error=outcome.error,
        attempts=outcome.attempts,
    )


# ========== Route Handlers ==========

@router.get(
    TENANT_PATH + "/rules/{rule_id}/test",
    response_model=RuleTestResponse,
    summary="Dry run: list tickets a rule would match",
)
async def dry_run_rule(rule_id: int, service: RuleService = Depends(get_rule_service)):
    return await service.test_rule(rule_id)


@router.post(
    TENANT_PATH + "/rules/{rule_id}/execute",
    response_model=RuleExecutionOutcomeResponse,
    summary="Apply a rule to one ticket",
)
async def execute_rule(
    rule_id: int,
    request: ExecuteRuleRequest,
    service: RuleService = Depends(get_rule_service),
):
    """Failures are recorded in the execution log and reported in the body, not as an HTTP error."""
    outcome = await service.execute_rule(rule_id, request.ticket_id)
    return _outcome_response(outcome)


@router.post(
    TENANT_PATH + "/tickets/{ticket_id}/execute-rules",
    response_model=List[RuleExecutionOutcomeResponse],
    summary="Run every enabled, matching rule on a new ticket",
)
async def execute_rules_on_ticket(ticket_id: int, service: RuleService = Depends(get_rule_service)):
    outcomes = await service.execute_all_rules_on_ticket(ticket_id)
    return [_outcome_response(o) for o in outcomes]


@router.post(
    TENANT_PATH + "/rules/{rule_id}/run",
    response_model=BackgroundRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a rule over all matching tickets in the background",
)
async def run_rule_in_background(
    rule_id: int,
    request: RunInBackgroundRequest,
    background_tasks: BackgroundTasks,
    tenant_code: str = Depends(get_active_tenant),
    service: RuleService = Depends(get_rule_service),
    registry: TenantRegistry = Depends(get_tenant_registry),
    queue: BackgroundJobQueue = Depends(get_job_queue),
):
    """
    Counts matches and returns at once. The job is queued after the response
    is sent; its outcome arrives as a RULE_EXECUTION_COMPLETE notification.
    """
    if queue.is_full:
        raise JobQueueFullError(queue.maxsize)

    settings = await registry.get_settings(tenant_code)
    return await service.run_rule_in_background(
        rule_id,
        request.user_id,
        lambda job: background_tasks.add_task(queue.enqueue, job),
        batch_size=settings.rule_batch_size,
        batch_delay_seconds=settings.rule_batch_delay_seconds,
    )


@router.get(
    TENANT_PATH + "/rules/{rule_id}/executions",
    response_model=List[RuleExecutionRecord],
    summary="Recent executions of a rule",
)
async def get_execution_history(
    rule_id: int,
    limit: int = Query(50, ge=1, le=500),
    service: RuleService = Depends(get_rule_service),
):
    return await service.execution_history(rule_id, limit)


@router.get(
    TENANT_PATH + "/statistics",
    response_model=RuleStatisticsResponse,
    summary="Rule and execution counters",
)
async def get_statistics(service: RuleService = Depends(get_rule_service)):
    return await service.statistics()


# Export router for inclusion in main app
rules_router = router
