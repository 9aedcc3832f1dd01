"""
Rules Domain Entities
=====================

Ticket processing rules and the closed set of actions they can apply.

Each action kind is its own Pydantic model tagged by ``action_type``; the
union is discriminated on that tag, so stored ``action_params`` are parsed
straight into a typed variant.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from serviflow.config import ExecutionResult, SearchTarget
from serviflow.core.exceptions import RuleActionError


# ========== Actions ==========

class DeleteTicketAction(BaseModel):
    action_type: Literal["delete"] = "delete"


class AssignToExpertAction(BaseModel):
    action_type: Literal["assign_to_expert"] = "assign_to_expert"
    expert_id: int
    expert_name: Optional[str] = None


class CreateForCustomerAction(BaseModel):
    """Fork the ticket to another customer."""
    action_type: Literal["create_for_customer"] = "create_for_customer"
    customer_id: int


class SetPriorityAction(BaseModel):
    action_type: Literal["set_priority"] = "set_priority"
    priority: str = Field(..., min_length=1)


class SetStatusAction(BaseModel):
    action_type: Literal["set_status"] = "set_status"
    status: str = Field(..., min_length=1)


class AddTagAction(BaseModel):
    action_type: Literal["add_tag"] = "add_tag"
    tag: str = Field(..., min_length=1)


class AddToMonitoringAction(BaseModel):
    """Mark the ticket as coming from a monitoring source."""
    action_type: Literal["add_to_monitoring"] = "add_to_monitoring"
    type: Optional[str] = None
    classified_as: Optional[str] = None
    normalised: Optional[bool] = None


class SetSLADeadlinesAction(BaseModel):
    """Override due dates directly, bypassing SLA resolution."""
    action_type: Literal["set_sla_deadlines"] = "set_sla_deadlines"
    response_due_at: Optional[datetime] = None
    resolve_due_at: Optional[datetime] = None

    @model_validator(mode="after")
    def require_one_deadline(self) -> "SetSLADeadlinesAction":
        if self.response_due_at is None and self.resolve_due_at is None:
            raise ValueError("At least one of response_due_at or resolve_due_at must be provided")
        return self


class SetSLADefinitionAction(BaseModel):
    """Record an SLA choice without recomputing deadlines."""
    action_type: Literal["set_sla_definition"] = "set_sla_definition"
    sla_definition_id: int
    sla_source: str = "rule"


RuleAction = Annotated[
    Union[
        DeleteTicketAction,
        AssignToExpertAction,
        CreateForCustomerAction,
        SetPriorityAction,
        SetStatusAction,
        AddTagAction,
        AddToMonitoringAction,
        SetSLADeadlinesAction,
        SetSLADefinitionAction,
    ],
    Field(discriminator="action_type"),
]

_action_adapter: TypeAdapter[RuleAction] = TypeAdapter(RuleAction)

ACTION_TYPES = (
    "delete", "assign_to_expert", "create_for_customer", "set_priority", "set_status",
    "add_tag", "add_to_monitoring", "set_sla_deadlines", "set_sla_definition",
)


def parse_action(action_type: str, params: Optional[dict]) -> RuleAction:
    """Build a typed action; invalid input is a business-rule error."""
    try:
        return _action_adapter.validate_python({**(params or {}), "action_type": action_type})
    except ValidationError as e:
        raise RuleActionError(f"Invalid parameters for action '{action_type}': {e.errors()[0]['msg']}") from e


# ========== Rules and outcomes ==========

@dataclass
class TicketRule:
    id: int
    name: str
    enabled: bool
    search_in: SearchTarget
    search_text: str
    case_sensitive: bool
    action_type: str
    action_params: dict = field(default_factory=dict)
    times_triggered: int = 0
    last_triggered_at: Optional[datetime] = None

    def action(self) -> RuleAction:
        return parse_action(self.action_type, self.action_params)


@dataclass
class ActionResult:
    """What an applied action did, for the audit trail."""
    message: str
    event_key: str
    activity_type: str = "updated"
    details: dict = field(default_factory=dict)


@dataclass
class RuleExecutionOutcome:
    rule_id: int
    ticket_id: int
    result: ExecutionResult
    action_taken: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    transient: bool = False
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.result == ExecutionResult.SUCCESS


@dataclass
class BatchJob:
    """A bulk rule run accepted for background execution."""
    tenant_code: str
    rule_id: int
    rule_name: str
    ticket_ids: List[int]
    user_id: Optional[int] = None
    batch_size: int = 5
    batch_delay_seconds: float = 3.0


@dataclass
class BatchResult:
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    circuit_broken: bool = False
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.success_count + self.error_count + self.skipped_count

    def summary_payload(self, job: BatchJob, error_limit: int) -> dict[str, Any]:
        errors = self.errors[:error_limit]
        if self.circuit_broken and errors and errors[-1] != self.errors[-1]:
            # The breaker reason is the last entry and always survives truncation
            errors[-1] = self.errors[-1]
        return {
            "rule_id": job.rule_id,
            "rule_name": job.rule_name,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "circuit_broken": self.circuit_broken,
            "errors": errors,
            "duration_seconds": round(self.duration_seconds, 2),
            "user_id": job.user_id,
        }
