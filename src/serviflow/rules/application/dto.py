"""
Rules Application DTOs
======================

Pydantic models for the rules API layer.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from serviflow.config import ExecutionResult


# ========== Request DTOs ==========

class ExecuteRuleRequest(BaseModel):
    ticket_id: int = Field(..., description="Ticket to apply the rule to")


class RunInBackgroundRequest(BaseModel):
    user_id: Optional[int] = Field(None, description="User notified on completion")


# ========== Response DTOs ==========

class RuleExecutionOutcomeResponse(BaseModel):
    rule_id: int
    ticket_id: int
    result: ExecutionResult
    action_taken: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


class MatchedTicket(BaseModel):
    id: int
    title: str
    status: str
    created_at: Optional[datetime] = None


class RuleTestResponse(BaseModel):
    """Dry-run result: tickets the rule would act on."""
    rule_id: int
    rule_name: str
    ticket_count: int
    tickets: List[MatchedTicket]


class BackgroundRunResponse(BaseModel):
    ticket_count: int
    started: bool
    rule_name: str
    message: str


class RuleExecutionRecord(BaseModel):
    id: int
    rule_id: int
    ticket_id: int
    ticket_title: Optional[str] = None
    action_taken: str
    result: ExecutionResult
    error_message: Optional[str] = None
    executed_at: datetime


class RuleStatisticsResponse(BaseModel):
    total_rules: int
    enabled_rules: int
    total_executions: int
    last_execution_at: Optional[datetime] = None
    executions_last_24h: int
