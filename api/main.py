"""
FeeLedger - Main FastAPI Application.

REST API layer for marketplace fee reconciliation: trigger fee sync
runs, follow their progress and read per-line-item fee breakdowns.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time

from api.routes import fees, health
from core.domain.exceptions import FeedAuthenticationError, SyncAlreadyRunningError
from core.infrastructure.database.config import close_database, init_database


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release connections on shutdown."""
    logger.info("🚀 FeeLedger API starting up...")
    await init_database()
    logger.info("📚 Swagger UI available at: /docs")
    yield
    await close_database()
    logger.info("👋 FeeLedger API shutting down...")


# =============================================================================
# CREATE FASTAPI APP
# =============================================================================

app = FastAPI(
    title="FeeLedger - Marketplace Fee Reconciliation API",
    description="""
    Reconciles Amazon marketplace fees per order line item.

    Features:
    - Settlement report reconciliation (authoritative fees)
    - Financial events ledger reconciliation (preliminary fees)
    - Estimates for pending orders
    - Account-level fees (storage, disposal, removal) per month
    - Idempotent, resumable backfills
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST LOGGING MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing."""
    start_time = time.time()

    logger.info(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"← {request.method} {request.url.path} "
        f"[{response.status_code}] ({duration:.3f}s)"
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(SyncAlreadyRunningError)
async def sync_already_running_handler(request: Request, exc: SyncAlreadyRunningError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(FeedAuthenticationError)
async def feed_authentication_handler(request: Request, exc: FeedAuthenticationError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
            "path": request.url.path
        }
    )


# =============================================================================
# INCLUDE ROUTERS
# =============================================================================

app.include_router(
    health.router,
    tags=["Health"]
)

app.include_router(
    fees.router,
    prefix="/api/v1/fees",
    tags=["Fees"]
)


@app.get("/", tags=["Root"])
async def root():
    """API root endpoint."""
    return {
        "message": "FeeLedger - Marketplace Fee Reconciliation API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
