"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Two kinds of stores exist:
- the master store, holding the tenant registry
- one store per tenant, each behind its own engine and connection pool

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations.
"""

import re
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from serviflow.config import settings
from serviflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Tenant codes are interpolated into store URLs
TENANT_CODE_PATTERN = r"^[a-z0-9_]+$"
_TENANT_CODE_RE = re.compile(TENANT_CODE_PATTERN)


class Base(DeclarativeBase):
    """
    Base class for all per-tenant SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


class MasterBase(DeclarativeBase):
    """Base class for models living in the master (registry) store."""
    pass


def _normalise_url(url: str) -> str:
    # asyncpg expects ssl= rather than libpq's sslmode=
    return url.replace("sslmode=", "ssl=")


def _make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading after commit
        autoflush=False,
    )


def _create_engine(url: str) -> AsyncEngine:
    url = _normalise_url(url)
    kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return create_async_engine(url, **kwargs)


# ========== Master store ==========

_master_engine: AsyncEngine | None = None
_master_session_maker: async_sessionmaker[AsyncSession] | None = None


def init_master_database(engine: Optional[AsyncEngine] = None) -> AsyncEngine:
    """
    Initialize the master engine and session maker.

    Should be called during application startup. Tests pass a prepared engine.
    """
    global _master_engine, _master_session_maker

    _master_engine = engine or _create_engine(settings.master_database_url)
    _master_session_maker = _make_session_maker(_master_engine)
    return _master_engine


def get_master_engine() -> AsyncEngine:
    """
    Get the master engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _master_engine is None:
        raise RuntimeError("Master database not initialized. Call init_master_database() first.")
    return _master_engine


@asynccontextmanager
async def get_master_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for master-store sessions.

    Usage:
        async with get_master_session_context() as session:
            result = await session.execute(select(TenantModel))
    """
    if _master_session_maker is None:
        raise RuntimeError("Master database not initialized. Call init_master_database() first.")

    async with _master_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_master_database() -> None:
    """Dispose of the master engine. Safe to call twice."""
    global _master_engine, _master_session_maker

    if _master_engine is not None:
        await _master_engine.dispose()
        _master_engine = None
        _master_session_maker = None


# ========== Tenant stores ==========

class TenantDatabaseManager:
    """
    Pool-per-tenant engine cache.

    Engines are created lazily from the tenant URL template on first use and
    kept for the life of the process, so tenants never share a pool.
    """

    def __init__(self, url_template: Optional[str] = None):
        self._url_template = url_template or settings.tenant_database_url_template
        self._engines: Dict[str, AsyncEngine] = {}
        self._session_makers: Dict[str, async_sessionmaker[AsyncSession]] = {}

    def register(self, tenant_code: str, engine: AsyncEngine) -> None:
        """Use a pre-built engine for a tenant."""
        self._engines[tenant_code] = engine
        self._session_makers[tenant_code] = _make_session_maker(engine)

    def get_engine(self, tenant_code: str) -> AsyncEngine:
        if tenant_code not in self._engines:
            if not _TENANT_CODE_RE.fullmatch(tenant_code):
                raise ValueError(f"Invalid tenant code: {tenant_code!r}")
            url = self._url_template.format(tenant=tenant_code)
            self.register(tenant_code, _create_engine(url))
            logger.info("Tenant engine created", extra={"tenant_code": tenant_code})
        return self._engines[tenant_code]

    @asynccontextmanager
    async def session(self, tenant_code: str) -> AsyncGenerator[AsyncSession, None]:
        """
        Transactional session against one tenant store.

        Commits on clean exit, rolls back and re-raises otherwise.
        """
        self.get_engine(tenant_code)
        async with self._session_makers[tenant_code]() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @property
    def tenant_codes(self) -> list[str]:
        return list(self._engines)

    async def dispose_all(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._session_makers.clear()


_tenant_manager: TenantDatabaseManager | None = None


def init_tenant_databases(manager: Optional[TenantDatabaseManager] = None) -> TenantDatabaseManager:
    """Install the process-wide tenant database manager."""
    global _tenant_manager
    _tenant_manager = manager or TenantDatabaseManager()
    return _tenant_manager


def get_tenant_manager() -> TenantDatabaseManager:
    """
    Get the tenant database manager.

    Also used as a FastAPI dependency.
    """
    if _tenant_manager is None:
        raise RuntimeError("Tenant databases not initialized. Call init_tenant_databases() first.")
    return _tenant_manager


async def close_tenant_databases() -> None:
    global _tenant_manager
    if _tenant_manager is not None:
        await _tenant_manager.dispose_all()
        _tenant_manager = None


async def create_tables(engine: AsyncEngine, master: bool = False) -> None:
    """
    Create all tables of one store.

    This should only be used for development/testing.
    Production should use migrations (Alembic).
    """
    metadata = MasterBase.metadata if master else Base.metadata
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
