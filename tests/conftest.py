"""
Shared pytest fixtures.

Every tenant store and the master store are in-memory SQLite databases (via
aiosqlite) behind a StaticPool, so tests run without a live Postgres
instance and each test starts from empty stores.

Environment overrides are applied before importing app modules so that
Settings() picks up the test environment.
"""
import os

# Set test environment BEFORE importing any app module
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SLA_SCHEDULER_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from serviflow.infrastructure.database import (
    TenantDatabaseManager,
    close_master_database,
    create_tables,
    get_master_session_context,
    init_master_database,
)
from serviflow.infrastructure.database.models import (  # noqa: F401 registers models
    NotificationModel,
    TenantModel,
    TenantSettingModel,
    TicketActivityModel,
    TicketModel,
)
from serviflow.infrastructure.tenancy import TenantRegistry
from serviflow.rules.infrastructure.models import (  # noqa: F401
    TicketProcessingRuleModel,
    TicketRuleExecutionModel,
)
from serviflow.shared.infrastructure.engine_config import EngineConfig, EngineConfigManager
from serviflow.sla.infrastructure.models import (  # noqa: F401
    BusinessHoursProfileModel,
    CMDBItemModel,
    CustomerCompanyModel,
    CustomerModel,
    SLADefinitionModel,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday 2 March 2026, 09:00 UTC
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_engine() -> AsyncEngine:
    return create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class FakeClock:
    """Settable clock injected wherever services take ``clock``."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SleepRecorder:
    """No-op async sleep that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class Seeder:
    """Inserts rows into tenant stores and the master store."""

    def __init__(self, databases: TenantDatabaseManager):
        self.databases = databases

    async def _add(self, tenant: str, model: Any) -> int:
        async with self.databases.session(tenant) as session:
            session.add(model)
            await session.flush()
            return model.id

    async def profile(self, tenant: str = "acme", **fields) -> int:
        fields.setdefault("name", "Office hours")
        return await self._add(tenant, BusinessHoursProfileModel(**fields))

    async def sla(
        self,
        tenant: str = "acme",
        name: str = "Standard",
        response: Optional[int] = 240,
        resolve: Optional[int] = 480,
        **fields,
    ) -> int:
        return await self._add(tenant, SLADefinitionModel(
            name=name,
            response_target_minutes=response,
            resolve_target_minutes=resolve,
            **fields,
        ))

    async def ticket(self, tenant: str = "acme", **fields) -> int:
        fields.setdefault("title", "Printer on fire")
        fields.setdefault("description", "The office printer is smoking")
        fields.setdefault("created_at", T0)
        fields.setdefault("updated_at", fields["created_at"])
        return await self._add(tenant, TicketModel(**fields))

    async def rule(self, tenant: str = "acme", **fields) -> int:
        fields.setdefault("name", "Printer rule")
        fields.setdefault("search_text", "printer")
        fields.setdefault("action_type", "set_priority")
        fields.setdefault("action_params", {"priority": "High"})
        return await self._add(tenant, TicketProcessingRuleModel(**fields))

    async def company(self, tenant: str = "acme", **fields) -> int:
        fields.setdefault("name", "Globex")
        return await self._add(tenant, CustomerCompanyModel(**fields))

    async def customer(self, tenant: str = "acme", **fields) -> int:
        return await self._add(tenant, CustomerModel(**fields))

    async def cmdb_item(self, tenant: str = "acme", **fields) -> int:
        fields.setdefault("name", "Core switch")
        return await self._add(tenant, CMDBItemModel(**fields))

    async def setting(self, key: str, value: str, tenant: str = "acme") -> None:
        await self._add(tenant, TenantSettingModel(setting_key=key, setting_value=value))

    async def tenant(self, code: str, status: str = "active") -> None:
        async with get_master_session_context() as session:
            session.add(TenantModel(tenant_code=code, name=code.title(), status=status))

    # ----- reads -----

    async def get_ticket(self, ticket_id: int, tenant: str = "acme") -> Optional[TicketModel]:
        async with self.databases.session(tenant) as session:
            return await session.get(TicketModel, ticket_id)

    async def all(self, model: Any, tenant: str = "acme") -> List[Any]:
        async with self.databases.session(tenant) as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def master_engine():
    engine = make_engine()
    await create_tables(engine, master=True)
    init_master_database(engine)
    yield engine
    await close_master_database()


@pytest_asyncio.fixture
async def databases():
    """Tenant manager with two registered in-memory tenant stores."""
    manager = TenantDatabaseManager(url_template="sqlite+aiosqlite:///:memory:?tenant={tenant}")
    for code in ("acme", "globex"):
        engine = make_engine()
        await create_tables(engine)
        manager.register(code, engine)
    yield manager
    await manager.dispose_all()


@pytest.fixture
def seed(databases) -> Seeder:
    return Seeder(databases)


@pytest.fixture
def config_manager() -> EngineConfigManager:
    return EngineConfigManager(EngineConfig())


@pytest.fixture
def config_provider(config_manager):
    return lambda: config_manager.config


@pytest.fixture
def registry(databases, config_provider) -> TenantRegistry:
    return TenantRegistry(databases, config_provider)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()
