"""
Orderflow SLA - Main Application
=================================

Order lifecycle engine with a dwell-time compliance audit.

Modules:
- Lifecycle: orders, line items and components moving through fixed statuses
- SLA Audit: periodic sweep that notifies once per stalled status

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, state machines and value objects
- Infrastructure: Database, policy file, mail, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from orderflow.config import settings
from orderflow.core import ApplicationException

# Infrastructure
from orderflow.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# SLA Module - External services
from orderflow.sla.infrastructure import AuditScheduler, RelayMailTransport, ThresholdPolicyManager
from orderflow.sla.infrastructure.factory import build_audit_components

# Module Routers
from orderflow.lifecycle.interfaces import orders_router
from orderflow.sla.interfaces import audit_router

# Middleware and logging
from orderflow.shared.api.middleware import (
    RequestContextMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from orderflow.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load the threshold policy and watch the file
    4. Build mail transport, sweep engine and coordinator
    5. Start the scheduler; its first run is the startup sweep

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the policy watcher
    3. Close the mail transport and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Orderflow SLA", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Note: If the database is not available, the server starts but
    # database-dependent endpoints and sweeps fail until it is
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading threshold policy", extra={"path": str(settings.threshold_policy_path)})
    policy_manager = ThresholdPolicyManager()
    policy_manager.load(settings.threshold_policy_path)
    policy_manager.start_watching()

    audit = build_audit_components(settings, get_session_maker(), policy_manager)

    # Store services in app state for dependency injection
    app.state.policy_manager = policy_manager
    app.state.dwell_evaluator = audit.evaluator
    app.state.notification_journal = audit.journal
    app.state.sweep_coordinator = audit.coordinator

    # The startup sweep runs as a scheduler job so serving is not delayed
    scheduler = None
    if settings.audit_interval_seconds > 0 or settings.run_sweep_on_startup:
        scheduler = AuditScheduler(interval_seconds=settings.audit_interval_seconds)
        await scheduler.start(audit.coordinator.run_scheduled, run_now=settings.run_sweep_on_startup)
    app.state.audit_scheduler = scheduler

    logger.info("Orderflow SLA started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Orderflow SLA")

    if scheduler:
        await scheduler.stop()

    policy_manager.stop_watching()

    if isinstance(audit.transport, RelayMailTransport):
        await audit.transport.close()

    await close_database()

    logger.info("Orderflow SLA shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Orderflow SLA API",
    description="""
    ## Order Lifecycle & SLA Audit

    ### Order Lifecycle

    - `POST /orders` - Register an order
    - `GET /orders/{id}` - Order with items, components and history
    - `POST /orders/{id}/actions/{action}` - Named lifecycle actions
    - `POST /orders/{id}/components/{component_id}/...` - Sourcing actions
    - `GET /orders/{id}/dwell` - Time in current status vs. limit

    ### SLA Audit

    - `POST /audit/sweeps` - Run a sweep now (409 while one is running)
    - `POST /audit/sweeps/cancel` - Stop the running sweep
    - `GET /audit/policy` - Active threshold policy
    - `POST /audit/policy/reload` - Reload the policy file
    - `GET /audit/journal` - Notifications sent

    A background sweep runs every `AUDIT_INTERVAL_SECONDS` (default 60).
    Each violation is notified once; failed sends are retried on the next sweep.
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
app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(orders_router)
app.include_router(audit_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "threshold_policy": "loaded",
                        "audit_scheduler": "running",
                        "sweep": "idle"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns policy, scheduler and sweep state.
    """
    state = request.app.state
    scheduler = getattr(state, "audit_scheduler", None)
    coordinator = getattr(state, "sweep_coordinator", None)

    checks = {
        "threshold_policy": "loaded" if getattr(state, "policy_manager", None) else "not_loaded",
        "audit_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "sweep": "running" if coordinator and coordinator.is_running else "idle",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Orderflow SLA",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "lifecycle": {"prefix": "/orders"},
            "audit": {"prefix": "/audit"},
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
