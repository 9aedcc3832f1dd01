"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA policy and resolver lookup tables.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from serviflow.infrastructure.database import Base


class BusinessHoursProfileModel(Base):
    """Maps to the 'business_hours_profiles' table."""
    __tablename__ = "business_hours_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    # JSON list of ISO weekdays, e.g. [1, 2, 3, 4, 5]
    days_of_week: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    start_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    is_24x7: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class SLADefinitionModel(Base):
    """Maps to the 'sla_definitions' table."""
    __tablename__ = "sla_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    response_target_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolve_target_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolve_after_response_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    near_breach_percent: Mapped[float] = mapped_column(Float, nullable=False, default=85.0)
    past_breach_percent: Mapped[float] = mapped_column(Float, nullable=False, default=120.0)
    business_hours_profile_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("business_hours_profiles.id"), nullable=True
    )

    business_hours_profile: Mapped[Optional[BusinessHoursProfileModel]] = relationship(lazy="joined")


class CustomerCompanyModel(Base):
    """Maps to the 'customer_companies' table."""
    __tablename__ = "customer_companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    sla_definition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Free-text SLA level from older data, matched against SLA names
    sla_level: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class CustomerModel(Base):
    """Maps to the 'customers' table (one row per customer user)."""
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    customer_company_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customer_companies.id"), nullable=True
    )


class CMDBItemModel(Base):
    """Maps to the 'cmdb_items' table."""
    __tablename__ = "cmdb_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    sla_definition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
