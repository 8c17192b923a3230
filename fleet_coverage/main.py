"""
Main FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fleet_coverage.db import initialize_database
from fleet_coverage.routers import coverage, hosts
from fleet_coverage.middleware import PerformanceMiddleware, RequestContextMiddleware
from fleet_coverage.cache import settings_cache
from fleet_coverage.exceptions import (
    CoverageEngineError,
    ValidationError,
    NotFoundError,
    PreconditionError,
    DataAccessError,
    InvariantViolation,
)
import logging

logger = logging.getLogger("fleet_coverage")

app = FastAPI(
    title="Fleet Coverage API",
    description="Insurance coverage resolution, gap analysis and commission tiers for rental fleets",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add performance middleware (innermost - executes first)
app.add_middleware(PerformanceMiddleware)

# Add request context middleware
app.add_middleware(RequestContextMiddleware)

# Add CORS middleware (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for_error(error: CoverageEngineError) -> int:
    """HTTP status code for an engine error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, PreconditionError):
        return 409
    if isinstance(error, DataAccessError):
        return 503
    return 500


@app.exception_handler(CoverageEngineError)
async def coverage_engine_error_handler(request: Request, exc: CoverageEngineError):
    status_code = status_for_error(exc)
    request_id = getattr(request.state, "request_id", "unknown")
    if isinstance(exc, InvariantViolation):
        logger.critical(f"Invariant violation surfaced | request_id={request_id} | error={exc}")
    elif status_code >= 500:
        logger.error(f"Engine error | request_id={request_id} | error={exc}")
    else:
        logger.info(f"Request rejected | request_id={request_id} | code={exc.code}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.on_event("startup")
async def startup_event():
    """Initialize database and warm up caches on startup."""
    logger.info("Starting Fleet Coverage API...")

    initialize_database()
    logger.info("Database initialized")

    thresholds = settings_cache.get_gap_thresholds()
    logger.info(
        f"Settings cache warmed up: luxury_threshold={thresholds['luxury_value_threshold']:.0f}, "
        f"budget_threshold={thresholds['budget_value_threshold']:.0f}"
    )

    logger.info("Startup complete")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Fleet Coverage API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# Include all routers
app.include_router(coverage.router, prefix="/v1", tags=["coverage"])
app.include_router(hosts.router, prefix="/v1", tags=["hosts"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
