"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from serviflow.config import SLAState

SLAPhaseStr = Literal["awaiting_response", "in_progress", "resolved"]


# ========== Request DTOs ==========

class AssignSLARequest(BaseModel):
    """
    Candidate SLA sources for a ticket.

    Fields left out are read from the ticket itself.
    """
    sla_definition_id: Optional[int] = Field(None, description="Explicit SLA override")
    requester_id: Optional[int] = Field(None, description="Requester user id (customer lookup)")
    cmdb_item_id: Optional[int] = Field(None, description="Linked configuration item")
    category: Optional[str] = Field(None, description="Ticket category")


class FirstResponseRequest(BaseModel):
    responded_at: Optional[datetime] = Field(None, description="Defaults to now")


class PauseRequest(BaseModel):
    waiting_customer: bool = Field(True, description="Also move the ticket to WAITING_CUSTOMER")


# ========== Response DTOs ==========

class SLAResolutionResponse(BaseModel):
    ticket_id: int
    sla_definition_id: Optional[int]
    sla_source: str


class SLAPhaseStatus(BaseModel):
    """State of one SLA phase."""
    state: SLAState
    percent_elapsed: Optional[float] = None
    due_at: Optional[datetime] = None
    remaining_business_minutes: Optional[float] = None


class TicketSLAStatus(BaseModel):
    """Full SLA picture for one ticket."""
    ticket_id: int
    sla_definition_id: Optional[int]
    sla_name: Optional[str]
    sla_source: Optional[str]
    sla_phase: SLAPhaseStr
    is_paused: bool
    sla_pause_total_seconds: int
    outside_business_hours: bool
    response: SLAPhaseStatus
    resolve: SLAPhaseStatus


class PauseResponse(BaseModel):
    ticket_id: int
    paused: bool
    sla_pause_total_seconds: Optional[int] = None


class CycleSummaryResponse(BaseModel):
    """Result of one scheduler cycle."""
    skipped_by_mutex: bool
    forced_stuck_reset: bool
    tenants_seen: int
    tenants_processed: int
    tenants_skipped: int
    tenants_failed: int
    tenants_timed_out: int
    tickets_evaluated: int
    notifications_created: int
    errors: List[str] = Field(default_factory=list)


class NotificationResponse(BaseModel):
    id: int
    ticket_id: Optional[int]
    type: str
    severity: str
    message: str
    payload: Optional[dict] = None
    created_at: datetime
