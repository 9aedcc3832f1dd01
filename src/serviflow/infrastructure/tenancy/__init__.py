"""
Tenant Registry
===============

Reads the list of active tenants from the master store and each tenant's
engine settings from its own store.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from serviflow.config import TenantSettingKey
from serviflow.infrastructure.database import (
    TenantDatabaseManager,
    get_master_session_context,
)
from serviflow.infrastructure.database.models import TenantModel, TenantSettingModel
from serviflow.shared.infrastructure.engine_config import EngineConfig

_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _parse_number(value: Optional[str], cast: Callable, default):
    if value is None:
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class TenantSettings:
    """Per-tenant engine settings after defaults and bounds are applied."""
    sla_processing_enabled: bool
    sla_check_interval_seconds: int
    rule_batch_size: int
    rule_batch_delay_seconds: float

    @classmethod
    def from_rows(cls, rows: dict[str, Optional[str]], config: EngineConfig) -> "TenantSettings":
        sched, rules = config.scheduler, config.rules

        interval = _parse_number(
            rows.get(TenantSettingKey.SLA_CHECK_INTERVAL_SECONDS.value), int, sched.default_check_interval_seconds
        )
        batch_size = _parse_number(
            rows.get(TenantSettingKey.RULE_BATCH_SIZE.value), int, rules.default_batch_size
        )
        batch_delay = _parse_number(
            rows.get(TenantSettingKey.RULE_BATCH_DELAY_SECONDS.value), float, rules.default_batch_delay_seconds
        )

        return cls(
            sla_processing_enabled=_parse_bool(
                rows.get(TenantSettingKey.SLA_PROCESSING_ENABLED.value), True
            ),
            sla_check_interval_seconds=max(sched.min_check_interval_seconds, interval),
            rule_batch_size=min(rules.max_batch_size, max(1, batch_size)),
            rule_batch_delay_seconds=max(rules.min_batch_delay_seconds, batch_delay),
        )


class TenantRegistry:
    """Tenant list and per-tenant settings."""

    def __init__(
        self,
        databases: TenantDatabaseManager,
        config_provider: Callable[[], EngineConfig],
    ):
        self._databases = databases
        self._config_provider = config_provider

    async def list_active_tenants(self) -> List[str]:
        """Active tenant codes in registry order."""
        async with get_master_session_context() as session:
            result = await session.execute(
                select(TenantModel.tenant_code)
                .where(TenantModel.status == "active")
                .order_by(TenantModel.id)
            )
            return list(result.scalars().all())

    async def is_active(self, tenant_code: str) -> bool:
        """Whether the tenant is registered and active in the master store."""
        async with get_master_session_context() as session:
            result = await session.execute(
                select(TenantModel.id)
                .where(TenantModel.tenant_code == tenant_code, TenantModel.status == "active")
            )
            return result.scalar_one_or_none() is not None

    async def get_settings(self, tenant_code: str) -> TenantSettings:
        """Read all engine settings for one tenant with a single query."""
        async with self._databases.session(tenant_code) as session:
            return await self.read_settings(session)

    async def read_settings(self, session: AsyncSession) -> TenantSettings:
        keys = [key.value for key in TenantSettingKey]
        result = await session.execute(
            select(TenantSettingModel.setting_key, TenantSettingModel.setting_value)
            .where(TenantSettingModel.setting_key.in_(keys))
        )
        rows = {key: value for key, value in result.all()}
        return TenantSettings.from_rows(rows, self._config_provider())
