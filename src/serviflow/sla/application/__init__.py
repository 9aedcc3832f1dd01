"""
SLA Application Layer
======================

Application layer for the SLA timing module.

Contains:
- Services: resolution, assignment, pause accounting, status and evaluation
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from serviflow.sla.application.dto import (
    AssignSLARequest,
    CycleSummaryResponse,
    FirstResponseRequest,
    NotificationResponse,
    PauseRequest,
    PauseResponse,
    SLAPhaseStatus,
    SLAResolutionResponse,
    TicketSLAStatus,
)
from serviflow.sla.application.services import (
    INotificationRepository,
    ISLALookupRepository,
    ITicketSLARepository,
    SLAAssignmentService,
    SLAPauseService,
    SLAResolver,
    SLAStatusService,
    TicketSLAEvaluator,
)

__all__ = [
    # DTOs
    "AssignSLARequest",
    "CycleSummaryResponse",
    "FirstResponseRequest",
    "NotificationResponse",
    "PauseRequest",
    "PauseResponse",
    "SLAPhaseStatus",
    "SLAResolutionResponse",
    "TicketSLAStatus",
    # Services
    "SLAAssignmentService",
    "SLAPauseService",
    "SLAResolver",
    "SLAStatusService",
    "TicketSLAEvaluator",
    # Repository Interfaces
    "INotificationRepository",
    "ISLALookupRepository",
    "ITicketSLARepository",
]
