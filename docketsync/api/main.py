"""
Docketsync API - Main FastAPI Application.

Serves the tracking endpoints and owns the background reconcile scheduler.
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from docketsync.config import SERVICE_NAME, SERVICE_VERSION, Settings, load_settings
from docketsync.courier.gateway import Sequel247Gateway
from docketsync.db import DatabaseConnection, UnitOfWork
from docketsync.tracking.reconciler import TrackingReconciler
from docketsync.tracking.scheduler import TrackingScheduler
from docketsync.utils.logging import setup_logging

# Load environment variables
load_dotenv()

# Configure logging early
setup_logging("docketsync-api")


def _init_database(settings: Settings) -> bool:
    """Initialize database connection if configured."""
    if not settings.database_configured:
        print("   Database: Not configured (DATABASE_URL / INSTANCE_CONNECTION_NAME not set)")
        return False

    try:
        DatabaseConnection.initialize(
            database_url=settings.database_url,
            instance_connection_name=settings.instance_connection_name,
            db_name=settings.db_name,
            db_user=settings.db_user,
        )
        print("   Database: Connected")
        return True
    except Exception as e:
        print(f"   Database: Failed to connect - {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    settings = load_settings()
    print("Starting Docketsync API...")
    print(f"   Courier environment: {settings.environment.value}")
    print(f"   Poll interval: {settings.poll_interval_minutes} minutes")

    db_initialized = _init_database(settings)

    gateway = Sequel247Gateway(settings.courier)
    reconciler = TrackingReconciler(gateway, settings, unit_of_work_factory=UnitOfWork)
    scheduler = TrackingScheduler(reconciler, UnitOfWork, settings)

    app.state.settings = settings
    app.state.reconciler = reconciler
    app.state.scheduler = scheduler

    if db_initialized and settings.scheduler_enabled:
        scheduler.start()
        print("   Scheduler: Started")
    else:
        print("   Scheduler: Disabled")

    yield

    # Shutdown
    scheduler.shutdown()
    gateway.session.close()

    if db_initialized:
        DatabaseConnection.close()
        print("   Database: Connection closed")

    print("Shutting down Docketsync API...")


# OpenAPI tag descriptions (shown in /docs and /openapi.json)
OPENAPI_TAGS = [
    {
        "name": "tracking",
        "description": "Order tracking, manual reconcile trigger and shipment cancellation",
    },
    {
        "name": "system",
        "description": "System health and information endpoints",
    },
]

app = FastAPI(
    title="Docketsync API",
    description=(
        "Shipment tracking for storefront orders.\n\n"
        "Polls the Sequel247 courier on a schedule, normalizes courier statuses into the "
        "order lifecycle (ORDER_PLACED, PROCESSING, PACKAGING, ON_THE_ROAD, DELIVERED, "
        "CANCELLED) and keeps stored tracking state reconciled."
    ),
    version=SERVICE_VERSION,
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)


@app.get("/", tags=["system"], operation_id="getServiceInfo")
async def root():
    """Return basic information about the API service."""
    return {
        "service": "Docketsync API",
        "version": SERVICE_VERSION,
        "status": "operational",
        "description": "Shipment tracking and courier reconciliation",
    }


@app.get("/health", tags=["system"], operation_id="healthCheck")
async def health_check(request: Request):
    """Liveness check (used by Cloud Run monitoring)."""
    settings = getattr(request.app.state, "settings", None)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "environment": settings.environment.value if settings else None,
    }


# Import and include routers
from docketsync.api.routes import system, tracking

app.include_router(tracking.router, prefix="/api", tags=["tracking"])
app.include_router(system.router, prefix="/api", tags=["system"])
