"""FastAPI application for the Delivery Dispatch Engine.

This API provides endpoints for:
- Manual order lifecycle operations (assign, pickup, deliver, cancel)
- Triggering a dispatch pass and inspecting the scheduler
- Health checks

The dispatch scheduler runs in the background for the lifetime of the app.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional
import logging
import traceback

from backend.api.schemas import ErrorResponse, HealthResponse
from backend.api.routes import dispatch, orders
from backend.core.errors import (
    ConcurrentModification,
    DispatchError,
    InvalidConfirmationCode,
    InvalidStateTransition,
    NotFound,
    StoreUnavailable,
)
from backend.db.database import init_database, close_database, check_database_health
from backend.db.stores import StoreFactory
from backend.services.dispatch_scheduler import DispatchScheduler
from backend.services.order_workflow import OrderWorkflowService
from backend.utils.config import DispatchConfig, load_dispatch_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFound: 404,
    InvalidStateTransition: 409,
    ConcurrentModification: 409,
    InvalidConfirmationCode: 400,
    StoreUnavailable: 503,
}


# Global application state
class AppState:
    """Centralized application state."""

    def __init__(self):
        self.config: Optional[DispatchConfig] = None
        self.store_factory: Optional[StoreFactory] = None
        self.scheduler: Optional[DispatchScheduler] = None
        self.workflow: Optional[OrderWorkflowService] = None
        self.uses_database = False

    def configure(
        self,
        store_factory: StoreFactory,
        config: Optional[DispatchConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Wire the engine components around a store factory."""
        self.config = config or DispatchConfig()
        self.store_factory = store_factory
        self.scheduler = DispatchScheduler(store_factory, self.config, clock=clock)
        self.workflow = OrderWorkflowService(
            store_factory,
            clock=clock,
            store_timeout_seconds=self.config.store_timeout_seconds,
        )
        logger.info("Dispatch components initialized")

    def reset(self):
        self.__init__()


app_state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting Delivery Dispatch Engine API")

    # A pre-configured store (tests, demo) skips the database
    if app_state.store_factory is None:
        logger.info("Initializing database...")
        store_factory = await init_database()
        app_state.configure(store_factory, load_dispatch_config())
        app_state.uses_database = True

    if app_state.config.scheduler_enabled:
        app_state.scheduler.start()

    yield

    await app_state.scheduler.stop()

    if app_state.uses_database:
        logger.info("Closing database connections...")
        await close_database()
        app_state.reset()

    logger.info("Delivery Dispatch Engine API shutdown complete")


app = FastAPI(
    title="Delivery Dispatch Engine API",
    description="Assigns delivery agents to pending orders and drives the order lifecycle",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map engine errors to HTTP status codes."""
    status_code = 422
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.kind}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.kind, detail=str(exc)).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    logger.error(traceback.format_exc())

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            detail=str(exc),
        ).model_dump(mode="json"),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Detailed health check."""
    components_status = {
        "workflow": "healthy" if app_state.workflow else "unhealthy",
        "scheduler": "running" if app_state.scheduler and app_state.scheduler.is_running else "stopped",
    }

    if app_state.uses_database:
        db_health = await check_database_health()
        components_status["database"] = db_health["status"]
    else:
        components_status["database"] = "in-memory"

    overall_status = "healthy"
    if not app_state.workflow or components_status["database"] == "unhealthy":
        overall_status = "degraded"

    return HealthResponse(status=overall_status, components=components_status)


app.include_router(orders.router, prefix="/api/v1", tags=["Orders"])
app.include_router(dispatch.router, prefix="/api/v1", tags=["Dispatch"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
