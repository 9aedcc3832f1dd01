"""
SLA Value Objects
==================

Immutable value objects and stateless calculators for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from serviflow.config import (
    NotificationType, Severity, SLAPhase, SLASource, SLAThreshold
)
from serviflow.core.clock import ensure_utc
from serviflow.sla.domain.business_hours import elapsed_business_minutes
from serviflow.sla.domain.entities import BusinessHoursProfile, TicketSLAView


@dataclass(frozen=True)
class SLAResolution:
    """Result of SLA resolution: the applicable definition and where it came from."""
    sla_id: Optional[int]
    source: SLASource

    @property
    def applies(self) -> bool:
        return self.sla_id is not None


@dataclass(frozen=True)
class NotificationSpec:
    """How one phase/threshold crossing is announced."""
    phase: SLAPhase
    threshold: SLAThreshold
    type: NotificationType
    severity: Severity
    label: str

    def message(self, ticket_id: int, percent: float) -> str:
        phase_text = "response" if self.phase == SLAPhase.RESPONSE else "resolution"
        return f"SLA {phase_text} {self.label} for Ticket #{ticket_id} ({round(percent, 1)}%)"


NOTIFICATION_SPECS: Dict[Tuple[SLAPhase, SLAThreshold], NotificationSpec] = {
    (spec.phase, spec.threshold): spec
    for spec in (
        NotificationSpec(SLAPhase.RESPONSE, SLAThreshold.NEAR, NotificationType.SLA_RESPONSE_NEAR,
                         Severity.WARNING, "near breach"),
        NotificationSpec(SLAPhase.RESPONSE, SLAThreshold.BREACHED, NotificationType.SLA_RESPONSE_BREACHED,
                         Severity.CRITICAL, "breached"),
        NotificationSpec(SLAPhase.RESPONSE, SLAThreshold.PAST, NotificationType.SLA_RESPONSE_PAST,
                         Severity.CRITICAL, "past breach"),
        NotificationSpec(SLAPhase.RESOLVE, SLAThreshold.NEAR, NotificationType.SLA_RESOLVE_NEAR,
                         Severity.WARNING, "near breach"),
        NotificationSpec(SLAPhase.RESOLVE, SLAThreshold.BREACHED, NotificationType.SLA_RESOLVE_BREACHED,
                         Severity.CRITICAL, "breached"),
        NotificationSpec(SLAPhase.RESOLVE, SLAThreshold.PAST, NotificationType.SLA_RESOLVE_PAST,
                         Severity.CRITICAL, "past breach"),
    )
}


@dataclass(frozen=True)
class ThresholdCrossing:
    """A threshold the ticket has reached whose marker is still unset."""
    spec: NotificationSpec
    percent: float
    due_at: Optional[datetime]

    def payload(self, tenant_code: str, ticket_id: int, sla_name: Optional[str]) -> dict:
        # Field names are consumed by channel connectors
        return {
            "tenantCode": tenant_code,
            "ticketId": ticket_id,
            "percentUsed": round(self.percent, 1),
            "dueAt": self.due_at.isoformat() if self.due_at else None,
            "slaName": sla_name,
            "phase": self.spec.phase.value,
        }


class SLAPercentCalculator:
    """
    Pure functions for percent-of-target-elapsed.

    Misconfigured inputs (missing dates, a zero or negative window) yield 0
    rather than raising.
    """

    @staticmethod
    def _percent(
        start: datetime,
        due: datetime,
        now: datetime,
        profile: Optional[BusinessHoursProfile]
    ) -> float:
        total = elapsed_business_minutes(start, due, profile)
        if total <= 0:
            return 0.0
        elapsed = max(0.0, elapsed_business_minutes(start, now, profile))
        return elapsed * 100 / total

    @classmethod
    def response_percent(
        cls,
        ticket: TicketSLAView,
        profile: Optional[BusinessHoursProfile],
        now: datetime
    ) -> float:
        if ticket.response_due_at is None or ticket.created_at is None:
            return 0.0
        return cls._percent(
            ensure_utc(ticket.created_at), ensure_utc(ticket.response_due_at), ensure_utc(now), profile
        )

    @staticmethod
    def effective_resolve_due(ticket: TicketSLAView) -> Optional[datetime]:
        """Resolve due date moved forward by the accumulated pause time."""
        if ticket.resolve_due_at is None:
            return None
        return ensure_utc(ticket.resolve_due_at) + timedelta(
            seconds=max(0, ticket.sla_pause_total_seconds or 0)
        )

    @classmethod
    def resolve_percent(
        cls,
        ticket: TicketSLAView,
        profile: Optional[BusinessHoursProfile],
        now: datetime
    ) -> float:
        start = ticket.resolve_clock_start
        due = cls.effective_resolve_due(ticket)
        if start is None or due is None:
            return 0.0
        return cls._percent(ensure_utc(start), due, ensure_utc(now), profile)

    @staticmethod
    def is_paused(ticket: TicketSLAView) -> bool:
        return ticket.is_paused


def crossed_thresholds(
    percent: float,
    near_percent: float,
    past_percent: float
) -> List[SLAThreshold]:
    """Thresholds reached by ``percent``, most severe first."""
    reached = []
    if percent >= past_percent:
        reached.append(SLAThreshold.PAST)
    if percent >= 100:
        reached.append(SLAThreshold.BREACHED)
    if percent >= near_percent:
        reached.append(SLAThreshold.NEAR)
    return reached
