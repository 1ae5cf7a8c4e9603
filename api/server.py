"""FastAPI server for the commerce sync engine.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import health, sync, financials
from core import __version__
from core.config import Settings, load_settings
from core.errors import StorageUnavailableError, SyncInProgressError
from core.observability import configure_logging, get_logger
from financials import FinancialAggregationEngine
from storage import init_db
from sync import SyncOrchestrator, SyncScheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings

    # Startup
    configure_logging(settings.log_level, json_format=settings.log_json, force=True)
    init_db(settings.db_path)
    logger.info(
        f"Commerce sync API starting up with {len(settings.stores)} store(s): "
        + ", ".join(store.label for store in settings.stores)
    )
    app.state.scheduler.start()

    yield

    # Shutdown
    await app.state.scheduler.stop()
    logger.info("Commerce sync API shutting down...")


async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "storage unavailable"})


async def sync_in_progress_handler(request: Request, exc: SyncInProgressError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc)})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or load_settings()

    app = FastAPI(
        title="Commerce Sync API",
        description="Multi-platform order/product/customer sync with financial aggregates",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    orchestrator = SyncOrchestrator(settings)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.scheduler = SyncScheduler(
        orchestrator,
        interval_seconds=settings.sync_interval_seconds,
        enabled=settings.scheduler_enabled,
    )
    app.state.engine = FinancialAggregationEngine(settings.db_path)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)
    app.add_exception_handler(SyncInProgressError, sync_in_progress_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router, prefix="/sync", tags=["Sync"])
    app.include_router(financials.router, prefix="/financials", tags=["Financials"])

    return app


def main() -> None:
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
