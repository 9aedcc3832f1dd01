"""
Shared API Dependencies
=======================

FastAPI dependencies exposing the engine components held on app.state.
"""

from typing import AsyncGenerator

from fastapi import Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from serviflow.core.clock import Clock, utcnow
from serviflow.core.exceptions import ResourceNotFoundException
from serviflow.infrastructure.database import TENANT_CODE_PATTERN, TenantDatabaseManager
from serviflow.infrastructure.tenancy import TenantRegistry
from serviflow.shared.infrastructure.engine_config import EngineConfigManager


def get_tenant_databases(request: Request) -> TenantDatabaseManager:
    return request.app.state.tenant_databases


def get_config_manager(request: Request) -> EngineConfigManager:
    return request.app.state.config_manager


def get_tenant_registry(request: Request) -> TenantRegistry:
    return request.app.state.tenant_registry


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", utcnow)


async def get_active_tenant(
    tenant_code: str = Path(..., max_length=64, pattern=TENANT_CODE_PATTERN),
    registry: TenantRegistry = Depends(get_tenant_registry),
) -> str:
    """The path's tenant code, if it names an active tenant; 404 otherwise."""
    if not await registry.is_active(tenant_code):
        raise ResourceNotFoundException("Tenant", tenant_code)
    return tenant_code


async def get_tenant_session(
    tenant_code: str = Depends(get_active_tenant),
    databases: TenantDatabaseManager = Depends(get_tenant_databases),
) -> AsyncGenerator[AsyncSession, None]:
    """Session on the tenant's store; committed when the request succeeds."""
    async with databases.session(tenant_code) as session:
        yield session
