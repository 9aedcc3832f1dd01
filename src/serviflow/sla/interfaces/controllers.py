"""
SLA Controllers (API Routes)
=============================

Internal FastAPI routes for the SLA lifecycle and the notification cycle.

Ticket and customer CRUD live in the ticketing core; these hooks are called
by it when a ticket is created, answered, or put on hold.

Controllers are thin - they delegate to application services.
"""

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from serviflow.core.clock import Clock
from serviflow.shared.api.dependencies import get_clock, get_tenant_session
from serviflow.shared.infrastructure.logging import get_logger
from serviflow.sla.application import (
    AssignSLARequest,
    CycleSummaryResponse,
    FirstResponseRequest,
    NotificationResponse,
    PauseRequest,
    PauseResponse,
    SLAAssignmentService,
    SLAPauseService,
    SLAResolutionResponse,
    SLAStatusService,
    TicketSLAStatus,
)
from serviflow.sla.domain import SLACandidates
from serviflow.sla.infrastructure import (
    SQLAlchemyNotificationRepository,
    SQLAlchemySLALookupRepository,
    SQLAlchemyTicketSLARepository,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA"])

TICKET_PATH = "/tenants/{tenant_code}/tickets/{ticket_id}"


# ========== Dependencies ==========

def get_assignment_service(
    session: AsyncSession = Depends(get_tenant_session),
    clock: Clock = Depends(get_clock),
) -> SLAAssignmentService:
    return SLAAssignmentService(
        SQLAlchemySLALookupRepository(session),
        SQLAlchemyTicketSLARepository(session),
        clock=clock,
    )


def get_pause_service(
    session: AsyncSession = Depends(get_tenant_session),
    clock: Clock = Depends(get_clock),
) -> SLAPauseService:
    return SLAPauseService(SQLAlchemyTicketSLARepository(session), clock=clock)


def get_status_service(
    session: AsyncSession = Depends(get_tenant_session),
    clock: Clock = Depends(get_clock),
) -> SLAStatusService:
    return SLAStatusService(SQLAlchemyTicketSLARepository(session), clock=clock)


# ========== Route Handlers ==========

@router.post(
    TICKET_PATH + "/assign",
    response_model=SLAResolutionResponse,
    summary="Resolve and apply an SLA to a ticket",
)
async def assign_sla(
    ticket_id: int,
    request: AssignSLARequest,
    service: SLAAssignmentService = Depends(get_assignment_service),
):
    """
    Runs the resolver (ticket, customer, CMDB item, category, default) and
    stores the SLA with its business-hours deadlines. Fields omitted from the
    body are taken from the ticket.
    """
    candidates = None
    if request.model_fields_set:
        candidates = SLACandidates(
            sla_definition_id=request.sla_definition_id,
            requester_id=request.requester_id,
            cmdb_item_id=request.cmdb_item_id,
            category=request.category,
        )
    resolution = await service.assign(ticket_id, candidates)
    return SLAResolutionResponse(
        ticket_id=ticket_id,
        sla_definition_id=resolution.sla_id,
        sla_source=resolution.source.value,
    )


@router.post(
    TICKET_PATH + "/first-response",
    response_model=TicketSLAStatus,
    summary="Record the first agent response",
)
async def record_first_response(
    ticket_id: int,
    request: FirstResponseRequest,
    service: SLAAssignmentService = Depends(get_assignment_service),
    status_service: SLAStatusService = Depends(get_status_service),
):
    await service.record_first_response(ticket_id, request.responded_at)
    return await status_service.get_status(ticket_id)


@router.post(TICKET_PATH + "/pause", response_model=PauseResponse, summary="Pause the resolution clock")
async def pause_sla(
    ticket_id: int,
    request: PauseRequest,
    service: SLAPauseService = Depends(get_pause_service),
):
    await service.pause(ticket_id, waiting_customer=request.waiting_customer)
    return PauseResponse(ticket_id=ticket_id, paused=True)


@router.post(TICKET_PATH + "/resume", response_model=PauseResponse, summary="Resume the resolution clock")
async def resume_sla(
    ticket_id: int,
    service: SLAPauseService = Depends(get_pause_service),
):
    total = await service.resume(ticket_id)
    return PauseResponse(ticket_id=ticket_id, paused=False, sla_pause_total_seconds=total)


@router.get(TICKET_PATH + "/status", response_model=TicketSLAStatus, summary="Current SLA status")
async def get_sla_status(
    ticket_id: int,
    service: SLAStatusService = Depends(get_status_service),
):
    return await service.get_status(ticket_id)


@router.get(
    TICKET_PATH + "/notifications",
    response_model=List[NotificationResponse],
    summary="Notifications written for a ticket",
)
async def list_ticket_notifications(
    ticket_id: int,
    session: AsyncSession = Depends(get_tenant_session),
):
    notifications = await SQLAlchemyNotificationRepository(session).list_for_ticket(ticket_id)
    return [
        NotificationResponse(
            id=n.id,
            ticket_id=n.ticket_id,
            type=n.type,
            severity=n.severity,
            message=n.message,
            payload=n.payload_json,
            created_at=n.created_at,
        )
        for n in notifications
    ]


@router.post(
    "/cycle",
    response_model=CycleSummaryResponse,
    summary="Run one notification cycle now",
)
async def run_notification_cycle(request: Request):
    """
    Runs a cycle outside the fixed tick. It shares the scheduler's run guard,
    so it is skipped while a scheduled cycle is in progress.
    """
    scheduler = request.app.state.notification_scheduler
    summary = await scheduler.run_cycle()
    logger.info("Manual SLA cycle triggered", extra={"notifications_created": summary.notifications_created})
    return CycleSummaryResponse(
        skipped_by_mutex=summary.skipped_by_mutex,
        forced_stuck_reset=summary.forced_stuck_reset,
        tenants_seen=summary.tenants_seen,
        tenants_processed=summary.tenants_processed,
        tenants_skipped=summary.tenants_skipped,
        tenants_failed=summary.tenants_failed,
        tenants_timed_out=summary.tenants_timed_out,
        tickets_evaluated=summary.tickets_evaluated,
        notifications_created=summary.notifications_created,
        errors=summary.errors,
    )


# Export router for inclusion in main app
sla_router = router
