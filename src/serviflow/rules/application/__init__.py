"""
Rules Application Layer
=======================

Contains:
- Services: matching, execution, bulk runs and completion notices
- DTOs: Data transfer objects for API serialization

Depends on the domain layer and repository interfaces only.
"""

from serviflow.rules.application.dto import (
    BackgroundRunResponse,
    ExecuteRuleRequest,
    MatchedTicket,
    RuleExecutionOutcomeResponse,
    RuleExecutionRecord,
    RuleStatisticsResponse,
    RuleTestResponse,
    RunInBackgroundRequest,
)
from serviflow.rules.application.services import (
    BatchRunner,
    CompletionNotifier,
    IActivityRepository,
    IRuleRepository,
    IRuleTicketRepository,
    IRuleUnitOfWork,
    RuleActionExecutor,
    RuleMatcher,
    RuleService,
    UnitOfWorkFactory,
)

__all__ = [
    # DTOs
    "BackgroundRunResponse",
    "ExecuteRuleRequest",
    "MatchedTicket",
    "RuleExecutionOutcomeResponse",
    "RuleExecutionRecord",
    "RuleStatisticsResponse",
    "RuleTestResponse",
    "RunInBackgroundRequest",
    # Services
    "BatchRunner",
    "CompletionNotifier",
    "RuleActionExecutor",
    "RuleMatcher",
    "RuleService",
    # Repository Interfaces
    "IActivityRepository",
    "IRuleRepository",
    "IRuleTicketRepository",
    "IRuleUnitOfWork",
    "UnitOfWorkFactory",
]
