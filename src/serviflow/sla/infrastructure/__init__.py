"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA timing:
- Models: SQLAlchemy ORM models for SLA policy and lookups
- Repositories: Data access layer
- External: APScheduler wrapper for the background cycle
"""

from serviflow.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    CMDBItemModel,
    CustomerCompanyModel,
    CustomerModel,
    SLADefinitionModel,
)
from serviflow.sla.infrastructure.repositories import (
    SQLAlchemyNotificationRepository,
    SQLAlchemySLALookupRepository,
    SQLAlchemyTicketSLARepository,
)

__all__ = [
    "BusinessHoursProfileModel",
    "CMDBItemModel",
    "CustomerCompanyModel",
    "CustomerModel",
    "SLADefinitionModel",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemySLALookupRepository",
    "SQLAlchemyTicketSLARepository",
]
