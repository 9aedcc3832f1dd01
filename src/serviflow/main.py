"""
ServiFlow SLA Engine - Main Application
=======================================

SLA timing and ticket automation engine of the ServiFlow ITSM backend.

Modules:
- SLA: SLA assignment, business-hours timing, threshold notifications
- Rules: pattern-matched ticket actions, bulk runs in the background

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and policies
- Infrastructure: Tenant stores, scheduler, job queue
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from serviflow.config import settings
from serviflow.core import ApplicationException

# Infrastructure
from serviflow.infrastructure.database import (
    close_master_database,
    close_tenant_databases,
    create_tables,
    get_master_engine,
    init_master_database,
    init_tenant_databases,
)
from serviflow.infrastructure.tenancy import TenantRegistry

# Module wiring
from serviflow.rules.services import create_rule_job_queue
from serviflow.sla.infrastructure.external import SLAScheduler
from serviflow.sla.services import SchedulerContext, SLANotificationScheduler

# Module Routers
from serviflow.rules.interfaces import rules_router
from serviflow.sla.interfaces import sla_router

# Shared
from serviflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from serviflow.shared.infrastructure.engine_config import EngineConfigManager
from serviflow.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize master and tenant stores
    3. Load engine configuration and watch it
    4. Start the background job queue
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop the SLA scheduler
    2. Wait (bounded) for in-flight and abandoned SLA passes
    3. Stop the job queue
    4. Stop the config watcher
    5. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_master_database()
    databases = init_tenant_databases()

    # Create master tables (for development - use Alembic in production)
    if settings.environment == "development":
        try:
            await create_tables(get_master_engine(), master=True)
        except Exception as e:
            logger.warning(f"Master database not available - running in degraded mode: {e}")

    config_manager = EngineConfigManager()
    config_manager.load(settings.engine_config_path)
    config_manager.start_watching()

    def config_provider():
        return config_manager.config

    registry = TenantRegistry(databases, config_provider)

    job_queue = create_rule_job_queue(databases, config_provider)
    job_queue.start()

    notification_scheduler = SLANotificationScheduler(
        SchedulerContext(max_run_seconds=settings.sla_max_run_seconds),
        databases,
        registry,
        config_provider,
        tenant_timeout_seconds=settings.sla_tenant_timeout_seconds,
    )
    sla_scheduler = SLAScheduler(interval_seconds=settings.sla_poll_interval_seconds)
    if settings.sla_scheduler_enabled:
        await sla_scheduler.start(notification_scheduler.run_cycle)
    else:
        logger.info("SLA scheduler disabled by configuration")

    # Store components in app state for dependency injection
    app.state.settings = settings
    app.state.tenant_databases = databases
    app.state.config_manager = config_manager
    app.state.tenant_registry = registry
    app.state.job_queue = job_queue
    app.state.notification_scheduler = notification_scheduler
    app.state.sla_scheduler = sla_scheduler

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    await sla_scheduler.stop()
    await notification_scheduler.drain(settings.sla_shutdown_grace_seconds)
    await job_queue.stop()
    config_manager.stop_watching()
    await close_tenant_databases()
    await close_master_database()

    logger.info("SLA engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="ServiFlow SLA Engine",
    description="""
    ## SLA Timing & Automation Engine

    Internal hooks of the ServiFlow ITSM backend.

    ### SLA
    - `POST /sla/tenants/{tenant}/tickets/{id}/assign` - Resolve and apply an SLA
    - `POST /sla/tenants/{tenant}/tickets/{id}/first-response` - Record first response
    - `POST /sla/tenants/{tenant}/tickets/{id}/pause` / `resume` - Customer-wait pause
    - `GET /sla/tenants/{tenant}/tickets/{id}/status` - Current SLA status
    - `POST /sla/cycle` - Run a notification cycle now

    ### Ticket Rules
    - `GET /rules/tenants/{tenant}/rules/{id}/test` - Dry run
    - `POST /rules/tenants/{tenant}/rules/{id}/execute` - Apply to one ticket
    - `POST /rules/tenants/{tenant}/rules/{id}/run` - Bulk run in the background
    - `GET /rules/tenants/{tenant}/rules/{id}/executions` - Execution history
    - `GET /rules/tenants/{tenant}/statistics` - Counters
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Last added runs first: the correlation id is set before the request is logged
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)
app.include_router(rules_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports scheduler, job queue and configuration state.
    """
    state = request.app.state
    sla_scheduler = getattr(state, "sla_scheduler", None)
    job_queue = getattr(state, "job_queue", None)
    checks = {
        "engine_config": "loaded" if getattr(state, "config_manager", None) else "not_loaded",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
        "job_queue": "running" if job_queue and job_queue.is_running else "stopped",
        "pending_jobs": job_queue.pending if job_queue else 0,
        "sla_next_run_at": sla_scheduler.next_run_at if sla_scheduler else None,
    }
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "serviflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
