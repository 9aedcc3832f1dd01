"""
SLA Infrastructure Repositories
=================================

Concrete implementations of the SLA repository interfaces using SQLAlchemy.

This layer contains the data access logic - how SLA policy, ticket SLA
state and notifications are read from and written to a tenant store.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from serviflow.config import CLOSED_STATUSES
from serviflow.core.clock import ensure_utc
from serviflow.infrastructure.database.models import NotificationModel, TicketModel
from serviflow.sla.application.services import (
    INotificationRepository,
    ISLALookupRepository,
    ITicketSLARepository,
)
from serviflow.sla.domain import (
    BusinessHoursProfile,
    SLADefinition,
    TicketSLAView,
    parse_days_of_week,
    parse_time,
)
from serviflow.sla.infrastructure.models import (
    BusinessHoursProfileModel,
    CMDBItemModel,
    CustomerCompanyModel,
    CustomerModel,
    SLADefinitionModel,
)


# ========== Row mapping ==========

def profile_from_model(model: Optional[BusinessHoursProfileModel]) -> Optional[BusinessHoursProfile]:
    if model is None:
        return None
    return BusinessHoursProfile(
        id=model.id,
        name=model.name,
        timezone=model.timezone or "UTC",
        days_of_week=parse_days_of_week(model.days_of_week),
        start_time=parse_time(model.start_time),
        end_time=parse_time(model.end_time),
        is_24x7=bool(model.is_24x7),
    )


def sla_from_model(model: Optional[SLADefinitionModel]) -> Optional[SLADefinition]:
    if model is None:
        return None
    return SLADefinition(
        id=model.id,
        name=model.name,
        is_active=bool(model.is_active),
        response_target_minutes=model.response_target_minutes,
        resolve_target_minutes=model.resolve_target_minutes,
        resolve_after_response_minutes=model.resolve_after_response_minutes,
        near_breach_percent=model.near_breach_percent if model.near_breach_percent is not None else 85.0,
        past_breach_percent=model.past_breach_percent if model.past_breach_percent is not None else 120.0,
        business_hours_profile_id=model.business_hours_profile_id,
        profile=profile_from_model(model.business_hours_profile),
    )


def view_from_model(ticket: TicketModel, sla: Optional[SLADefinition]) -> TicketSLAView:
    return TicketSLAView(
        id=ticket.id,
        status=ticket.status,
        created_at=ensure_utc(ticket.created_at),
        sla_definition_id=ticket.sla_definition_id,
        sla_source=ticket.sla_source,
        response_due_at=ensure_utc(ticket.response_due_at),
        resolve_due_at=ensure_utc(ticket.resolve_due_at),
        first_responded_at=ensure_utc(ticket.first_responded_at),
        ownership_started_at=ensure_utc(ticket.ownership_started_at),
        resolved_at=ensure_utc(ticket.resolved_at),
        sla_paused_at=ensure_utc(ticket.sla_paused_at),
        sla_pause_total_seconds=ticket.sla_pause_total_seconds or 0,
        pool_status=ticket.pool_status,
        notified_response_near_at=ensure_utc(ticket.notified_response_near_at),
        notified_response_breached_at=ensure_utc(ticket.notified_response_breached_at),
        notified_response_past_at=ensure_utc(ticket.notified_response_past_at),
        notified_resolve_near_at=ensure_utc(ticket.notified_resolve_near_at),
        notified_resolve_breached_at=ensure_utc(ticket.notified_resolve_breached_at),
        notified_resolve_past_at=ensure_utc(ticket.notified_resolve_past_at),
        sla=sla,
    )


# ========== Repositories ==========

class SQLAlchemySLALookupRepository(ISLALookupRepository):
    """Read-only lookups used by SLA resolution."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_definition(self, sla_id: int) -> Optional[SLADefinition]:
        result = await self._session.execute(
            select(SLADefinitionModel).where(SLADefinitionModel.id == sla_id)
        )
        return sla_from_model(result.unique().scalar_one_or_none())

    async def active_sla_id(self, sla_id: Optional[int]) -> Optional[int]:
        if not sla_id:
            return None
        result = await self._session.execute(
            select(SLADefinitionModel.id).where(
                SLADefinitionModel.id == sla_id,
                SLADefinitionModel.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def active_sla_id_by_name(self, level: str) -> Optional[int]:
        """Case-insensitive name match; exact beats substring, then lowest id."""
        needle = level.strip().lower()
        if not needle:
            return None
        lowered = func.lower(SLADefinitionModel.name)
        result = await self._session.execute(
            select(SLADefinitionModel.id, lowered)
            .where(
                SLADefinitionModel.is_active.is_(True),
                lowered.contains(needle, autoescape=True),
            )
            .order_by(SLADefinitionModel.id)
        )
        rows = result.all()
        for sla_id, name in rows:
            if name == needle:
                return sla_id
        return rows[0][0] if rows else None

    async def customer_sla_id(self, requester_id: int) -> Optional[int]:
        result = await self._session.execute(
            select(CustomerCompanyModel.sla_definition_id, CustomerCompanyModel.sla_level)
            .join(CustomerModel, CustomerModel.customer_company_id == CustomerCompanyModel.id)
            .where(CustomerModel.user_id == requester_id)
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None

        sla_id, sla_level = row
        active = await self.active_sla_id(sla_id)
        if active is None and sla_level:
            active = await self.active_sla_id_by_name(sla_level)
        return active

    async def cmdb_sla_id(self, cmdb_item_id: int) -> Optional[int]:
        result = await self._session.execute(
            select(CMDBItemModel.sla_definition_id).where(CMDBItemModel.id == cmdb_item_id)
        )
        return await self.active_sla_id(result.scalar_one_or_none())

    async def category_sla_id(self, category: str) -> Optional[int]:
        # Category mappings are not configured yet
        return None

    async def default_sla_id(self) -> Optional[int]:
        result = await self._session.execute(
            select(SLADefinitionModel.id)
            .where(SLADefinitionModel.is_active.is_(True))
            .order_by(SLADefinitionModel.id)
            .limit(1)
        )
        return result.scalar_one_or_none()


class SQLAlchemyTicketSLARepository(ITicketSLARepository):
    """Ticket SLA state reads and single-column writes."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _joined(self):
        return (
            select(TicketModel, SLADefinitionModel)
            .outerjoin(SLADefinitionModel, SLADefinitionModel.id == TicketModel.sla_definition_id)
            .outerjoin(
                BusinessHoursProfileModel,
                BusinessHoursProfileModel.id == SLADefinitionModel.business_hours_profile_id,
            )
            .options(contains_eager(SLADefinitionModel.business_hours_profile))
        )

    async def get_ticket(self, ticket_id: int) -> Optional[TicketModel]:
        return await self._session.get(TicketModel, ticket_id)

    async def get_view(self, ticket_id: int) -> Optional[TicketSLAView]:
        result = await self._session.execute(self._joined().where(TicketModel.id == ticket_id))
        row = result.unique().first()
        if row is None:
            return None
        ticket, sla = row
        return view_from_model(ticket, sla_from_model(sla))

    async def fetch_open_batch(self, after_id: int, limit: int) -> List[TicketSLAView]:
        """
        Open tickets with an assigned SLA, ascending id, strictly after ``after_id``.

        Ticket, SLA definition and business-hours profile come back in one read.
        """
        stmt = (
            self._joined()
            .where(
                TicketModel.id > after_id,
                TicketModel.sla_definition_id.is_not(None),
                TicketModel.status.not_in(CLOSED_STATUSES),
                TicketModel.resolved_at.is_(None),
            )
            .order_by(TicketModel.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [view_from_model(ticket, sla_from_model(sla)) for ticket, sla in result.unique().all()]

    async def claim_marker(self, ticket_id: int, marker_field: str, at: datetime) -> bool:
        # Conditional write: only one pass can move a marker off NULL
        column = getattr(TicketModel, marker_field)
        result = await self._session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_id, column.is_(None))
            .values({marker_field: at})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SQLAlchemyNotificationRepository(INotificationRepository):
    """Append-only notification writes."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(
        self,
        ticket_id: Optional[int],
        type: str,
        severity: str,
        message: str,
        payload: dict,
        created_at: Optional[datetime] = None,
    ) -> int:
        model = NotificationModel(
            ticket_id=ticket_id,
            type=type,
            severity=severity,
            message=message,
            payload_json=payload,
        )
        if created_at is not None:
            model.created_at = created_at
        self._session.add(model)
        await self._session.flush()
        return model.id

    async def list_for_ticket(self, ticket_id: int) -> List[NotificationModel]:
        result = await self._session.execute(
            select(NotificationModel)
            .where(NotificationModel.ticket_id == ticket_id)
            .order_by(NotificationModel.id)
        )
        return list(result.scalars().all())
