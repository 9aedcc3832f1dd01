"""
Rules Infrastructure Layer
==========================

- Models: SQLAlchemy ORM models for rules and executions
- Repositories: Data access and the tenant unit of work
- Jobs: In-process background queue for bulk runs
"""

from serviflow.rules.infrastructure.jobs import BackgroundJobQueue
from serviflow.rules.infrastructure.models import (
    TicketProcessingRuleModel,
    TicketRuleExecutionModel,
)
from serviflow.rules.infrastructure.repositories import (
    SQLAlchemyActivityRepository,
    SQLAlchemyRuleRepository,
    SQLAlchemyRuleTicketRepository,
    SQLAlchemyRuleUnitOfWork,
    rule_unit_of_work_factory,
)

__all__ = [
    "BackgroundJobQueue",
    "SQLAlchemyActivityRepository",
    "SQLAlchemyRuleRepository",
    "SQLAlchemyRuleTicketRepository",
    "SQLAlchemyRuleUnitOfWork",
    "TicketProcessingRuleModel",
    "TicketRuleExecutionModel",
    "rule_unit_of_work_factory",
]
