"""
OccurMap - Biodiversity Occurrence Grid Service

Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .config import get_settings
from .database import async_session_factory, init_db
from .grid import GridEngine, GridMode, SourceUnavailableError
from .routers import grid, health, occurrences
from .schemas import ErrorResponse
from .services.occurrence_source import OccurrenceSource

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_grid_engine() -> GridEngine:
    """Build the grid engine from settings."""
    source = OccurrenceSource(
        async_session_factory,
        batch_size=settings.grid_stream_batch_size,
    )
    return GridEngine(
        source=source,
        cache_sizes=settings.grid_cache_sizes,
        cache_mode=GridMode(settings.grid_cache_mode),
        scan_cap=settings.grid_scan_cap,
        warmup_seconds=settings.grid_warmup_seconds,
        refresh_seconds=settings.grid_refresh_seconds,
        progress_every=settings.grid_progress_every,
        progress_interval=settings.grid_progress_interval,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting OccurMap API...")
    try:
        await init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")

    engine = create_grid_engine()
    app.state.grid_engine = engine
    if settings.grid_scheduler_enabled:
        engine.start()

    yield

    # Shutdown
    logger.info("Shutting down OccurMap API...")
    await engine.stop()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="""
    ## OccurMap - Occurrence Density and Richness Grids

    Aggregates biodiversity occurrence records into fixed-size
    latitude/longitude cells.

    ### Key Features

    - **Global cached grid**: recomputed in the background every hour
    - **Viewport grids**: on-demand counts for a bounding box and filters
    - **Scan cap**: every aggregation stops after a bounded number of
      records; `capped: true` marks a lower-bound result
    """,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
def error_response(status_code: int, detail: str, error_code: str) -> JSONResponse:
    body = ErrorResponse(detail=detail, error_code=error_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return error_response(400, str(exc), "invalid_parameter")


@app.exception_handler(SourceUnavailableError)
async def source_unavailable_handler(request: Request, exc: SourceUnavailableError):
    logger.warning(f"Record source unavailable: {exc}")
    return error_response(503, "Database connection is not established yet", "source_unavailable")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.url.path}")
    return error_response(500, "Internal server error", "internal_error")


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(grid.router, prefix="/api/grid", tags=["Grid"])
app.include_router(occurrences.router, prefix="/api", tags=["Filters"])


# Root endpoint
@app.get("/")
async def root():
    """API root - returns basic info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Occurrence density and species richness grids",
        "docs_url": "/docs",
        "health_url": "/health",
    }
