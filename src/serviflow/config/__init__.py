"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="serviflow-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    master_database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/serviflow_master",
        description="Master (tenant registry) connection URL (async)"
    )
    tenant_database_url_template: str = Field(
        default="postgresql+asyncpg://localhost:5432/serviflow_{tenant}",
        description="Per-tenant connection URL; '{tenant}' is replaced by the tenant code"
    )
    db_pool_size: int = Field(default=5, description="Connection pool size per tenant", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Engine Configuration ==========
    engine_config_path: Path = Field(
        default=Path("engine_config.yaml"),
        description="Path to engine tuning YAML file (hot-reloaded)"
    )

    # ========== SLA Scheduler ==========
    sla_scheduler_enabled: bool = Field(
        default=True,
        description="Start the SLA notification scheduler on startup"
    )
    sla_poll_interval_seconds: int = Field(
        default=180,
        description="Fixed poll tick of the SLA notification scheduler",
        ge=10
    )
    sla_tenant_timeout_seconds: float = Field(
        default=60.0,
        description="Hard timeout for one tenant's SLA pass",
        gt=0
    )
    sla_max_run_seconds: float = Field(
        default=300.0,
        description="A cycle running longer than this is treated as stuck",
        gt=0
    )
    sla_shutdown_grace_seconds: float = Field(
        default=30.0,
        description="How long shutdown waits for in-flight SLA work before closing stores",
        ge=0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("tenant_database_url_template")
    @classmethod
    def validate_tenant_template(cls, v: str) -> str:
        if "{tenant}" not in v:
            raise ValueError("tenant_database_url_template must contain '{tenant}'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str, Enum):
    """Ticket lifecycle statuses as stored by the ticketing core."""
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    PENDING = "Pending"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class PoolStatus(str, Enum):
    """Ownership workflow states."""
    OPEN_POOL = "OPEN_POOL"
    CLAIMED_LOCKED = "CLAIMED_LOCKED"
    IN_PROGRESS_OWNED = "IN_PROGRESS_OWNED"
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


class SLASource(str, Enum):
    """Provenance of a ticket's SLA assignment."""
    TICKET = "ticket"
    CUSTOMER = "customer"
    CMDB = "cmdb"
    CATEGORY = "category"
    DEFAULT = "default"
    RULE = "rule"
    ERROR = "error"


class SLAPhase(str, Enum):
    """SLA clock phases."""
    RESPONSE = "response"
    RESOLVE = "resolve"


class SLAThreshold(str, Enum):
    """Threshold levels, most severe first."""
    PAST = "past"
    BREACHED = "breached"
    NEAR = "near"


class SLAState(str, Enum):
    """Per-phase SLA state shown in status views."""
    NO_SLA = "no_sla"
    PENDING = "pending"
    ON_TRACK = "on_track"
    NEAR_BREACH = "near_breach"
    BREACHED = "breached"
    MET = "met"
    PAUSED = "paused"


class NotificationType(str, Enum):
    """Notification type values consumed by channel connectors."""
    SLA_RESPONSE_NEAR = "SLA_RESPONSE_NEAR"
    SLA_RESPONSE_BREACHED = "SLA_RESPONSE_BREACHED"
    SLA_RESPONSE_PAST = "SLA_RESPONSE_PAST"
    SLA_RESOLVE_NEAR = "SLA_RESOLVE_NEAR"
    SLA_RESOLVE_BREACHED = "SLA_RESOLVE_BREACHED"
    SLA_RESOLVE_PAST = "SLA_RESOLVE_PAST"
    RULE_EXECUTION_COMPLETE = "RULE_EXECUTION_COMPLETE"


class Severity(str, Enum):
    """Notification severity."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SearchTarget(str, Enum):
    """Which ticket text a processing rule matches against."""
    TITLE = "title"
    BODY = "body"
    BOTH = "both"


class ExecutionResult(str, Enum):
    """Outcome of applying a rule to one ticket."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class TenantSettingKey(str, Enum):
    """Keys read from a tenant's settings table."""
    SLA_PROCESSING_ENABLED = "sla_processing_enabled"
    SLA_CHECK_INTERVAL_SECONDS = "sla_check_interval_seconds"
    RULE_BATCH_SIZE = "batch_size"
    RULE_BATCH_DELAY_SECONDS = "batch_delay_seconds"


# ========== Lists for validation ==========

CLOSED_STATUSES = [TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value]
