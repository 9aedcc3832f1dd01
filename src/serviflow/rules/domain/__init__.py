"""
Rules Domain Layer
==================

Ticket processing rules, their typed actions and the resilience
policies used by bulk runs.
"""

from serviflow.rules.domain.entities import (
    ACTION_TYPES,
    ActionResult,
    AddTagAction,
    AddToMonitoringAction,
    AssignToExpertAction,
    BatchJob,
    BatchResult,
    CreateForCustomerAction,
    DeleteTicketAction,
    RuleAction,
    RuleExecutionOutcome,
    SetPriorityAction,
    SetSLADeadlinesAction,
    SetSLADefinitionAction,
    SetStatusAction,
    TicketRule,
    parse_action,
)
from serviflow.rules.domain.policies import (
    CircuitBreaker,
    RetryPolicy,
    chunked,
    is_transient_error,
)

__all__ = [
    # Actions
    "ACTION_TYPES",
    "AddTagAction",
    "AddToMonitoringAction",
    "AssignToExpertAction",
    "CreateForCustomerAction",
    "DeleteTicketAction",
    "RuleAction",
    "SetPriorityAction",
    "SetSLADeadlinesAction",
    "SetSLADefinitionAction",
    "SetStatusAction",
    "parse_action",
    # Entities
    "ActionResult",
    "BatchJob",
    "BatchResult",
    "RuleExecutionOutcome",
    "TicketRule",
    # Policies
    "CircuitBreaker",
    "RetryPolicy",
    "chunked",
    "is_transient_error",
]
