"""
Shared Store Models
===================

SQLAlchemy ORM models for tables used by more than one module.

Tenant store: tickets, notifications, ticket activity, tenant settings.
Master store: the tenant registry.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from serviflow.config import TicketStatus
from serviflow.infrastructure.database import Base, MasterBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantModel(MasterBase):
    """
    Registered tenant.

    Maps to the master 'tenants' table.
    """
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")


class TenantSettingModel(Base):
    """Key/value tenant settings ('tenant_settings')."""
    __tablename__ = "tenant_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    setting_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    setting_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class TicketModel(Base):
    """
    Database model for a ticket.

    Maps to the 'tickets' table. Only the columns this engine reads or
    writes are mapped.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN.value)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default="Medium")
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tags: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # People and links
    requester_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    assignee_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cmdb_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    first_responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # SLA assignment
    sla_definition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sla_source: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    sla_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    response_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolve_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Ownership workflow and pause accounting
    pool_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ownership_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_pause_total_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Notification idempotency markers
    notified_response_near_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_response_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_response_past_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_resolve_near_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_resolve_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_resolve_past_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


MARKER_COLUMNS = (
    "notified_response_near_at",
    "notified_response_breached_at",
    "notified_response_past_at",
    "notified_resolve_near_at",
    "notified_resolve_breached_at",
    "notified_resolve_past_at",
)


class NotificationModel(Base):
    """
    Write-once notification row ('notifications').

    ``ticket_id`` is null for rule batch completion notices.
    """
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketActivityModel(Base):
    """Append-only audit trail ('ticket_activity')."""
    __tablename__ = "ticket_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="system")
    actor_type: Mapped[str] = mapped_column(String(32), nullable=False, default="system")
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    event_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
