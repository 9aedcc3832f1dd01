"""
Rules Infrastructure Models
===========================

SQLAlchemy ORM models for ticket processing rules and their execution log.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from serviflow.config import SearchTarget
from serviflow.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketProcessingRuleModel(Base):
    """Maps to the 'ticket_processing_rules' table."""
    __tablename__ = "ticket_processing_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Predicate
    search_in: Mapped[str] = mapped_column(String(16), nullable=False, default=SearchTarget.BOTH.value)
    search_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    case_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Action
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_params: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Stats
    times_triggered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketRuleExecutionModel(Base):
    """Append-only execution log ('ticket_rule_executions')."""
    __tablename__ = "ticket_rule_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("ticket_processing_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Not a foreign key: the ticket may have been deleted by the action itself
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action_taken: Mapped[str] = mapped_column(String(64), nullable=False)
    result: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
