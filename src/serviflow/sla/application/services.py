"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from serviflow.config import PoolStatus, SLAPhase, SLASource, SLAState
from serviflow.core.clock import Clock, ensure_utc, utcnow
from serviflow.core.exceptions import RepositoryException, ResourceNotFoundException
from serviflow.infrastructure.database.models import MARKER_COLUMNS
from serviflow.shared.infrastructure.logging import get_logger
from serviflow.sla.application.dto import SLAPhaseStatus, TicketSLAStatus
from serviflow.sla.domain import (
    NOTIFICATION_SPECS,
    SLACandidates,
    SLADefinition,
    SLAPercentCalculator,
    SLAResolution,
    ThresholdCrossing,
    TicketSLAView,
    add_business_minutes,
    business_minutes_remaining,
    crossed_thresholds,
    is_within_business_hours,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLALookupRepository(ABC):
    """Interface for SLA policy lookups used by resolution."""

    @abstractmethod
    async def get_definition(self, sla_id: int) -> Optional[SLADefinition]:
        """Load an SLA definition with its business-hours profile."""

    @abstractmethod
    async def active_sla_id(self, sla_id: Optional[int]) -> Optional[int]:
        """Return ``sla_id`` if it names an active SLA, else None."""

    @abstractmethod
    async def customer_sla_id(self, requester_id: int) -> Optional[int]:
        """Active SLA configured on the requester's customer company."""

    @abstractmethod
    async def cmdb_sla_id(self, cmdb_item_id: int) -> Optional[int]:
        """Active SLA configured on a configuration item."""

    @abstractmethod
    async def category_sla_id(self, category: str) -> Optional[int]:
        """Active SLA mapped to a ticket category."""

    @abstractmethod
    async def default_sla_id(self) -> Optional[int]:
        """Lowest-id active SLA."""


class ITicketSLARepository(ABC):
    """Interface for ticket SLA state access."""

    @abstractmethod
    async def get_ticket(self, ticket_id: int) -> Optional[Any]:
        """Get the mutable ticket row."""

    @abstractmethod
    async def get_view(self, ticket_id: int) -> Optional[TicketSLAView]:
        """Get the SLA projection of one ticket."""

    @abstractmethod
    async def fetch_open_batch(self, after_id: int, limit: int) -> List[TicketSLAView]:
        """Open tickets with an SLA, ascending id, after ``after_id``."""

    @abstractmethod
    async def claim_marker(self, ticket_id: int, marker_field: str, at: datetime) -> bool:
        """Set one notification marker if it is still unset; True when this call set it."""


class INotificationRepository(ABC):
    """Interface for notification writes."""

    @abstractmethod
    async def add(
        self,
        ticket_id: Optional[int],
        type: str,
        severity: str,
        message: str,
        payload: dict,
        created_at: Optional[datetime] = None,
    ) -> int:
        """Insert a notification and return its id."""


# ========== Application Services ==========

class SLAResolver:
    """
    Picks the SLA that applies to a ticket.

    Precedence, first active match wins: explicit ticket SLA, customer
    company SLA, configuration item SLA, category mapping, tenant default.
    """

    def __init__(self, lookup: ISLALookupRepository):
        self._lookup = lookup

    async def resolve(self, candidates: SLACandidates) -> SLAResolution:
        try:
            return await self._resolve(candidates)
        except (SQLAlchemyError, RepositoryException, OSError) as e:
            logger.error(
                "SLA resolution failed",
                extra={"error": str(e), "sla_definition_id": candidates.sla_definition_id}
            )
            return SLAResolution(None, SLASource.ERROR)

    async def _resolve(self, candidates: SLACandidates) -> SLAResolution:
        if candidates.sla_definition_id:
            sla_id = await self._lookup.active_sla_id(candidates.sla_definition_id)
            if sla_id:
                return SLAResolution(sla_id, SLASource.TICKET)

        if candidates.requester_id:
            sla_id = await self._lookup.customer_sla_id(candidates.requester_id)
            if sla_id:
                return SLAResolution(sla_id, SLASource.CUSTOMER)

        if candidates.cmdb_item_id:
            sla_id = await self._lookup.cmdb_sla_id(candidates.cmdb_item_id)
            if sla_id:
                return SLAResolution(sla_id, SLASource.CMDB)

        if candidates.category:
            sla_id = await self._lookup.category_sla_id(candidates.category)
            if sla_id:
                return SLAResolution(sla_id, SLASource.CATEGORY)

        sla_id = await self._lookup.default_sla_id()
        if sla_id:
            return SLAResolution(sla_id, SLASource.DEFAULT)

        return SLAResolution(None, SLASource.ERROR)


class SLAAssignmentService:
    """
    Applies an SLA to a ticket and keeps its deadlines current.

    Deadlines are computed in business minutes:
    response due = created + response target, resolve due = response due +
    resolution window. A new assignment re-arms all notifications.
    """

    def __init__(
        self,
        lookup: ISLALookupRepository,
        tickets: ITicketSLARepository,
        clock: Clock = utcnow,
    ):
        self._lookup = lookup
        self._tickets = tickets
        self._resolver = SLAResolver(lookup)
        self._clock = clock

    async def _require_ticket(self, ticket_id: int):
        ticket = await self._tickets.get_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return ticket

    async def assign(
        self,
        ticket_id: int,
        candidates: Optional[SLACandidates] = None,
    ) -> SLAResolution:
        """
        Resolve and apply an SLA.

        Without explicit candidates the ticket's own columns are used.
        """
        ticket = await self._require_ticket(ticket_id)
        if candidates is None:
            candidates = SLACandidates(
                sla_definition_id=ticket.sla_definition_id,
                requester_id=ticket.requester_id,
                cmdb_item_id=ticket.cmdb_item_id,
                category=ticket.category,
            )

        resolution = await self._resolver.resolve(candidates)
        if not resolution.applies:
            logger.info("No SLA applies to ticket", extra={"ticket_id": ticket_id})
            return resolution

        sla = await self._lookup.get_definition(resolution.sla_id)
        if sla is None:
            # Definition deleted between resolution and load
            logger.warning(
                "Resolved SLA definition not found",
                extra={"ticket_id": ticket_id, "sla_id": resolution.sla_id}
            )
            return SLAResolution(None, SLASource.ERROR)

        created_at = ensure_utc(ticket.created_at)

        ticket.sla_definition_id = sla.id
        ticket.sla_source = resolution.source.value
        ticket.sla_applied_at = self._clock()
        ticket.response_due_at = None
        ticket.resolve_due_at = None
        if sla.response_target_minutes:
            ticket.response_due_at = add_business_minutes(
                created_at, sla.response_target_minutes, sla.profile
            )
        if sla.resolve_window_minutes:
            resolve_from = ensure_utc(ticket.first_responded_at) or ticket.response_due_at or created_at
            ticket.resolve_due_at = add_business_minutes(
                resolve_from, sla.resolve_window_minutes, sla.profile
            )
        for marker in MARKER_COLUMNS:
            setattr(ticket, marker, None)

        logger.info(
            "SLA assigned",
            extra={
                "ticket_id": ticket_id,
                "sla_id": sla.id,
                "sla_source": resolution.source.value,
            }
        )
        return resolution

    async def record_first_response(self, ticket_id: int, at: Optional[datetime] = None) -> datetime:
        """
        Record the first response once and restart the resolution window from it.

        Returns the effective first-response time.
        """
        ticket = await self._require_ticket(ticket_id)
        if ticket.first_responded_at is not None:
            return ensure_utc(ticket.first_responded_at)

        at = ensure_utc(at) or self._clock()
        ticket.first_responded_at = at

        if ticket.sla_definition_id:
            sla = await self._lookup.get_definition(ticket.sla_definition_id)
            if sla is not None and sla.resolve_window_minutes:
                ticket.resolve_due_at = add_business_minutes(at, sla.resolve_window_minutes, sla.profile)
        return at


class SLAPauseService:
    """Starts and stops the customer-wait pause on the resolution clock."""

    def __init__(self, tickets: ITicketSLARepository, clock: Clock = utcnow):
        self._tickets = tickets
        self._clock = clock

    async def pause(self, ticket_id: int, waiting_customer: bool = True) -> None:
        ticket = await self._tickets.get_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        if ticket.sla_paused_at is None:
            ticket.sla_paused_at = self._clock()
        if waiting_customer:
            ticket.pool_status = PoolStatus.WAITING_CUSTOMER.value

    async def resume(self, ticket_id: int) -> int:
        """
        End the pause and credit its length to the ticket.

        Returns the total paused seconds after crediting.
        """
        ticket = await self._tickets.get_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))

        if ticket.sla_paused_at is not None:
            paused_for = (self._clock() - ensure_utc(ticket.sla_paused_at)).total_seconds()
            ticket.sla_pause_total_seconds = (ticket.sla_pause_total_seconds or 0) + max(0, int(paused_for))
            ticket.sla_paused_at = None
        if ticket.pool_status == PoolStatus.WAITING_CUSTOMER.value:
            ticket.pool_status = PoolStatus.IN_PROGRESS_OWNED.value
        return ticket.sla_pause_total_seconds


class SLAStatusService:
    """Read model: where a ticket stands against its SLA right now."""

    def __init__(self, tickets: ITicketSLARepository, clock: Clock = utcnow):
        self._tickets = tickets
        self._clock = clock

    @staticmethod
    def _state(percent: float, sla: SLADefinition) -> SLAState:
        if percent >= 100:
            return SLAState.BREACHED
        if percent >= sla.near_breach_percent:
            return SLAState.NEAR_BREACH
        return SLAState.ON_TRACK

    def _response_status(self, view: TicketSLAView, now: datetime) -> SLAPhaseStatus:
        sla = view.sla
        if sla is None or view.response_due_at is None:
            return SLAPhaseStatus(state=SLAState.NO_SLA)
        if view.first_responded_at is not None:
            met = view.first_responded_at <= view.response_due_at
            return SLAPhaseStatus(
                state=SLAState.MET if met else SLAState.BREACHED,
                due_at=view.response_due_at,
            )
        percent = SLAPercentCalculator.response_percent(view, view.profile, now)
        return SLAPhaseStatus(
            state=self._state(percent, sla),
            percent_elapsed=round(percent, 1),
            due_at=view.response_due_at,
            remaining_business_minutes=business_minutes_remaining(now, view.response_due_at, view.profile),
        )

    def _resolve_status(self, view: TicketSLAView, now: datetime) -> SLAPhaseStatus:
        sla = view.sla
        if sla is None or view.resolve_due_at is None:
            return SLAPhaseStatus(state=SLAState.NO_SLA)
        due = SLAPercentCalculator.effective_resolve_due(view)
        if view.resolved_at is not None:
            return SLAPhaseStatus(
                state=SLAState.MET if view.resolved_at <= due else SLAState.BREACHED,
                due_at=due,
            )
        if view.resolve_clock_start is None:
            return SLAPhaseStatus(state=SLAState.PENDING, due_at=due)
        percent = SLAPercentCalculator.resolve_percent(view, view.profile, now)
        state = SLAState.PAUSED if view.is_paused else self._state(percent, sla)
        return SLAPhaseStatus(
            state=state,
            percent_elapsed=round(percent, 1),
            due_at=due,
            remaining_business_minutes=business_minutes_remaining(now, due, view.profile),
        )

    async def get_status(self, ticket_id: int, now: Optional[datetime] = None) -> TicketSLAStatus:
        view = await self._tickets.get_view(ticket_id)
        if view is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        now = ensure_utc(now) or self._clock()

        if view.is_resolved:
            phase = "resolved"
        elif view.is_responded:
            phase = "in_progress"
        else:
            phase = "awaiting_response"

        return TicketSLAStatus(
            ticket_id=view.id,
            sla_definition_id=view.sla_definition_id,
            sla_name=view.sla.name if view.sla else None,
            sla_source=view.sla_source,
            sla_phase=phase,
            is_paused=view.is_paused,
            sla_pause_total_seconds=view.sla_pause_total_seconds,
            outside_business_hours=not is_within_business_hours(now, view.profile),
            response=self._response_status(view, now),
            resolve=self._resolve_status(view, now),
        )


class TicketSLAEvaluator:
    """
    Detects threshold crossings for one ticket and records them.

    Each phase is checked against past, breach and near thresholds in that
    order. Every reached threshold whose marker is unset produces exactly one
    notification. The marker is claimed in the store before the insert, so a
    stale view whose marker was set elsewhere writes nothing.
    """

    def __init__(
        self,
        tickets: ITicketSLARepository,
        notifications: INotificationRepository,
    ):
        self._tickets = tickets
        self._notifications = notifications

    @staticmethod
    def pending_crossings(view: TicketSLAView, now: datetime) -> List[ThresholdCrossing]:
        """Crossings reached at ``now`` whose markers are still unset."""
        sla = view.sla
        if sla is None:
            return []

        phases = []
        if not view.is_responded:
            phases.append((
                SLAPhase.RESPONSE,
                SLAPercentCalculator.response_percent(view, view.profile, now),
                view.response_due_at,
            ))
        if not view.is_resolved and not view.is_paused:
            phases.append((
                SLAPhase.RESOLVE,
                SLAPercentCalculator.resolve_percent(view, view.profile, now),
                SLAPercentCalculator.effective_resolve_due(view),
            ))

        crossings = []
        for phase, percent, due_at in phases:
            for threshold in crossed_thresholds(percent, sla.near_breach_percent, sla.past_breach_percent):
                if view.marker(phase, threshold) is None:
                    crossings.append(ThresholdCrossing(NOTIFICATION_SPECS[(phase, threshold)], percent, due_at))
        return crossings

    async def evaluate(self, tenant_code: str, view: TicketSLAView, now: datetime) -> List[ThresholdCrossing]:
        fired = []
        for crossing in self.pending_crossings(view, now):
            spec = crossing.spec
            marker = view.marker_field(spec.phase, spec.threshold)
            claimed = await self._tickets.claim_marker(view.id, marker, now)
            view.set_marker(spec.phase, spec.threshold, now)
            if not claimed:
                logger.debug(
                    "SLA marker already set, notification skipped",
                    extra={"tenant_code": tenant_code, "ticket_id": view.id, "marker": marker}
                )
                continue

            await self._notifications.add(
                ticket_id=view.id,
                type=spec.type.value,
                severity=spec.severity.value,
                message=spec.message(view.id, crossing.percent),
                payload=crossing.payload(tenant_code, view.id, view.sla.name),
                created_at=now,
            )
            fired.append(crossing)

            logger.info(
                "SLA notification written",
                extra={
                    "tenant_code": tenant_code,
                    "ticket_id": view.id,
                    "notification_type": spec.type.value,
                    "percent_used": round(crossing.percent, 1),
                }
            )
        return fired
