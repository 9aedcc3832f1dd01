"""
Rules Infrastructure Repositories
=================================

SQLAlchemy implementations of the rules repository interfaces, and the
unit of work that groups them over one tenant session.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from serviflow.config import ExecutionResult, SearchTarget
from serviflow.core.clock import ensure_utc
from serviflow.infrastructure.database import TenantDatabaseManager
from serviflow.infrastructure.database.models import TicketActivityModel, TicketModel
from serviflow.rules.application.services import (
    IActivityRepository,
    IRuleRepository,
    IRuleTicketRepository,
)
from serviflow.rules.domain import TicketRule
from serviflow.rules.infrastructure.models import (
    TicketProcessingRuleModel,
    TicketRuleExecutionModel,
)
from serviflow.sla.infrastructure.repositories import SQLAlchemyNotificationRepository


def rule_from_model(model: TicketProcessingRuleModel) -> TicketRule:
    try:
        search_in = SearchTarget(model.search_in)
    except ValueError:
        search_in = SearchTarget.BOTH
    return TicketRule(
        id=model.id,
        name=model.name,
        enabled=bool(model.enabled),
        search_in=search_in,
        search_text=model.search_text or "",
        case_sensitive=bool(model.case_sensitive),
        action_type=model.action_type,
        action_params=dict(model.action_params or {}),
        times_triggered=model.times_triggered or 0,
        last_triggered_at=ensure_utc(model.last_triggered_at),
    )


class SQLAlchemyRuleRepository(IRuleRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_rule(self, rule_id: int) -> Optional[TicketRule]:
        model = await self._session.get(TicketProcessingRuleModel, rule_id)
        return rule_from_model(model) if model else None

    async def list_enabled(self) -> List[TicketRule]:
        result = await self._session.execute(
            select(TicketProcessingRuleModel)
            .where(TicketProcessingRuleModel.enabled.is_(True))
            .order_by(TicketProcessingRuleModel.id)
        )
        return [rule_from_model(m) for m in result.scalars().all()]

    async def record_trigger(self, rule_id: int, at: datetime) -> None:
        await self._session.execute(
            update(TicketProcessingRuleModel)
            .where(TicketProcessingRuleModel.id == rule_id)
            .values(
                times_triggered=TicketProcessingRuleModel.times_triggered + 1,
                last_triggered_at=at,
            )
        )

    async def add_execution(
        self,
        rule_id: int,
        ticket_id: int,
        action_taken: str,
        result: ExecutionResult,
        error_message: Optional[str],
        executed_at: datetime,
    ) -> None:
        self._session.add(TicketRuleExecutionModel(
            rule_id=rule_id,
            ticket_id=ticket_id,
            action_taken=action_taken,
            result=ExecutionResult(result).value,
            error_message=error_message,
            executed_at=executed_at,
        ))
        await self._session.flush()

    async def execution_history(self, rule_id: int, limit: int) -> List[Dict[str, Any]]:
        """Newest first, with the ticket title when the ticket still exists."""
        result = await self._session.execute(
            select(TicketRuleExecutionModel, TicketModel.title)
            .outerjoin(TicketModel, TicketModel.id == TicketRuleExecutionModel.ticket_id)
            .where(TicketRuleExecutionModel.rule_id == rule_id)
            .order_by(TicketRuleExecutionModel.executed_at.desc(), TicketRuleExecutionModel.id.desc())
            .limit(limit)
        )
        return [
            {
                "id": execution.id,
                "rule_id": execution.rule_id,
                "ticket_id": execution.ticket_id,
                "ticket_title": title,
                "action_taken": execution.action_taken,
                "result": execution.result,
                "error_message": execution.error_message,
                "executed_at": ensure_utc(execution.executed_at),
            }
            for execution, title in result.all()
        ]

    async def statistics(self, since: datetime) -> Dict[str, Any]:
        rules = TicketProcessingRuleModel
        executions = TicketRuleExecutionModel

        rule_counts = (await self._session.execute(
            select(func.count(rules.id), func.count(rules.id).filter(rules.enabled.is_(True)))
        )).one()
        execution_counts = (await self._session.execute(
            select(
                func.count(executions.id),
                func.max(executions.executed_at),
                func.count(executions.id).filter(executions.executed_at >= since),
            )
        )).one()

        return {
            "total_rules": rule_counts[0] or 0,
            "enabled_rules": rule_counts[1] or 0,
            "total_executions": execution_counts[0] or 0,
            "last_execution_at": ensure_utc(execution_counts[1]),
            "executions_last_24h": execution_counts[2] or 0,
        }


class SQLAlchemyRuleTicketRepository(IRuleTicketRepository):

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_ticket(self, ticket_id: int) -> Optional[TicketModel]:
        return await self._session.get(TicketModel, ticket_id)

    async def create_ticket(self, **fields: Any) -> TicketModel:
        ticket = TicketModel(**fields)
        self._session.add(ticket)
        await self._session.flush()
        return ticket

    async def delete_ticket(self, ticket: TicketModel) -> None:
        await self._session.delete(ticket)
        await self._session.flush()

    async def search_candidates(self, rule: TicketRule, limit: int) -> List[TicketModel]:
        needle = rule.search_text
        if not needle:
            return []

        def column_filter(column):
            if rule.case_sensitive:
                return column.contains(needle, autoescape=True)
            return func.lower(column).contains(needle.lower(), autoescape=True)

        target = SearchTarget(rule.search_in)
        if target == SearchTarget.TITLE:
            condition = column_filter(TicketModel.title)
        elif target == SearchTarget.BODY:
            condition = column_filter(TicketModel.description)
        else:
            condition = or_(column_filter(TicketModel.title), column_filter(TicketModel.description))

        result = await self._session.execute(
            select(TicketModel)
            .where(condition)
            .order_by(TicketModel.created_at.desc(), TicketModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class SQLAlchemyActivityRepository(IActivityRepository):
    """Append-only audit trail written by automated actions."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(
        self,
        ticket_id: int,
        activity_type: str,
        description: str,
        event_key: str,
        meta: dict,
        created_at: datetime,
    ) -> None:
        self._session.add(TicketActivityModel(
            ticket_id=ticket_id,
            user_id=None,
            activity_type=activity_type,
            description=description,
            is_public=False,
            source="system",
            actor_type="system",
            actor_id=None,
            event_key=event_key,
            meta=meta,
            created_at=created_at,
        ))
        await self._session.flush()

    async def list_for_ticket(self, ticket_id: int) -> List[TicketActivityModel]:
        result = await self._session.execute(
            select(TicketActivityModel)
            .where(TicketActivityModel.ticket_id == ticket_id)
            .order_by(TicketActivityModel.id)
        )
        return list(result.scalars().all())


class SQLAlchemyRuleUnitOfWork:
    """Rule repositories sharing one tenant session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.rules = SQLAlchemyRuleRepository(session)
        self.tickets = SQLAlchemyRuleTicketRepository(session)
        self.activity = SQLAlchemyActivityRepository(session)
        self.notifications = SQLAlchemyNotificationRepository(session)


def rule_unit_of_work_factory(databases: TenantDatabaseManager):
    """Bind a tenant database manager into a unit-of-work factory."""

    @asynccontextmanager
    async def open_unit_of_work(tenant_code: str) -> AsyncIterator[SQLAlchemyRuleUnitOfWork]:
        async with databases.session(tenant_code) as session:
            yield SQLAlchemyRuleUnitOfWork(session)

    return open_unit_of_work
