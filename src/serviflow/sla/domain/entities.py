"""
SLA Domain Entities
====================

Pure Python domain entities for SLA timing.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Repositories map
ORM rows onto them.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from serviflow.config import CLOSED_STATUSES, PoolStatus, SLAPhase, SLAThreshold


@dataclass(frozen=True)
class BusinessHoursProfile:
    """
    Weekly working-hours calendar.

    ``days_of_week`` holds ISO weekdays (1 = Monday ... 7 = Sunday).
    """
    id: Optional[int]
    timezone: str = "UTC"
    days_of_week: Tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7)
    start_time: time = time(0, 0)
    end_time: time = time(23, 59)
    is_24x7: bool = False
    name: str = ""

    @property
    def tzinfo(self) -> tzinfo:
        """Profile timezone; an unknown zone name is read as UTC."""
        try:
            return ZoneInfo(self.timezone or "UTC")
        except (ZoneInfoNotFoundError, ValueError):
            return timezone.utc

    @property
    def is_degenerate(self) -> bool:
        """True when the calendar can never contain working time."""
        return not self.days_of_week or self.end_time <= self.start_time


@dataclass
class SLADefinition:
    """
    Named SLA policy.

    Target windows are in business minutes. Thresholds are percentages of
    the target elapsed.
    """
    id: int
    name: str
    is_active: bool = True
    response_target_minutes: Optional[int] = None
    resolve_target_minutes: Optional[int] = None
    resolve_after_response_minutes: Optional[int] = None
    near_breach_percent: float = 85.0
    past_breach_percent: float = 120.0
    business_hours_profile_id: Optional[int] = None
    profile: Optional[BusinessHoursProfile] = None

    @property
    def resolve_window_minutes(self) -> Optional[int]:
        """Resolution window measured from the end of the response phase."""
        return self.resolve_after_response_minutes or self.resolve_target_minutes


@dataclass
class SLACandidates:
    """Facts about a ticket that can each point at an SLA definition."""
    sla_definition_id: Optional[int] = None
    requester_id: Optional[int] = None
    cmdb_item_id: Optional[int] = None
    category: Optional[str] = None


@dataclass
class TicketSLAView:
    """
    SLA-relevant projection of a ticket.

    The six ``notified_<phase>_<threshold>_at`` markers record which
    notifications have been written for the current SLA assignment.
    """
    id: int
    status: str
    created_at: Optional[datetime]
    sla_definition_id: Optional[int] = None
    sla_source: Optional[str] = None
    response_due_at: Optional[datetime] = None
    resolve_due_at: Optional[datetime] = None
    first_responded_at: Optional[datetime] = None
    ownership_started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    sla_paused_at: Optional[datetime] = None
    sla_pause_total_seconds: int = 0
    pool_status: Optional[str] = None
    notified_response_near_at: Optional[datetime] = None
    notified_response_breached_at: Optional[datetime] = None
    notified_response_past_at: Optional[datetime] = None
    notified_resolve_near_at: Optional[datetime] = None
    notified_resolve_breached_at: Optional[datetime] = None
    notified_resolve_past_at: Optional[datetime] = None
    sla: Optional[SLADefinition] = field(default=None, repr=False)

    @staticmethod
    def marker_field(phase: SLAPhase, threshold: SLAThreshold) -> str:
        return f"notified_{phase.value}_{threshold.value}_at"

    def marker(self, phase: SLAPhase, threshold: SLAThreshold) -> Optional[datetime]:
        return getattr(self, self.marker_field(phase, threshold))

    def set_marker(self, phase: SLAPhase, threshold: SLAThreshold, at: datetime) -> None:
        setattr(self, self.marker_field(phase, threshold), at)

    @property
    def profile(self) -> Optional[BusinessHoursProfile]:
        return self.sla.profile if self.sla else None

    @property
    def is_responded(self) -> bool:
        return self.first_responded_at is not None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None or self.status in CLOSED_STATUSES

    @property
    def is_paused(self) -> bool:
        """Waiting on the customer, either by pool status or an explicit pause."""
        return self.pool_status == PoolStatus.WAITING_CUSTOMER.value or self.sla_paused_at is not None

    @property
    def resolve_clock_start(self) -> Optional[datetime]:
        """Ownership start wins over first response."""
        return self.ownership_started_at or self.first_responded_at
