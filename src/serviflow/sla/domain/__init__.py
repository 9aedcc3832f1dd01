"""
SLA Domain Layer
================

Domain layer for the SLA timing module.

Contains:
- Entities: BusinessHoursProfile, SLADefinition, TicketSLAView, SLACandidates
- Value Objects: SLAResolution, NotificationSpec, ThresholdCrossing
- Domain Services: the business-hours calendar and SLAPercentCalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from serviflow.sla.domain.entities import (
    BusinessHoursProfile,
    SLACandidates,
    SLADefinition,
    TicketSLAView,
)
from serviflow.sla.domain.business_hours import (
    add_business_minutes,
    business_minutes_remaining,
    elapsed_business_minutes,
    is_within_business_hours,
    next_business_start,
    parse_days_of_week,
    parse_time,
)
from serviflow.sla.domain.value_objects import (
    NOTIFICATION_SPECS,
    NotificationSpec,
    SLAPercentCalculator,
    SLAResolution,
    ThresholdCrossing,
    crossed_thresholds,
)

__all__ = [
    # Entities
    "BusinessHoursProfile",
    "SLACandidates",
    "SLADefinition",
    "TicketSLAView",
    # Calendar
    "add_business_minutes",
    "business_minutes_remaining",
    "elapsed_business_minutes",
    "is_within_business_hours",
    "next_business_start",
    "parse_days_of_week",
    "parse_time",
    # Value Objects & Services
    "NOTIFICATION_SPECS",
    "NotificationSpec",
    "SLAPercentCalculator",
    "SLAResolution",
    "ThresholdCrossing",
    "crossed_thresholds",
]
