"""
Class Booking Engine - Main Application Entry Point

Admission control and lifecycle for capacity-limited class sessions:
- No overbooking: per-session atomic units with versioned counter writes
- Deterministic waitlist with automatic promotion on cancellation
- Credit-pack consumption and deadline-based refunds
- Time-boxed check-in with fire-and-forget activity signals
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import BookingEngineError
from app.core.logging import setup_logging, get_logger
from app.core.metrics import metrics_endpoint
from app.api.router import api_router
from app.api.middleware import RequestLoggingMiddleware
from app.db.session import SessionLocal
from app.infrastructure.redis_client import close_redis, get_redis_status
from app.services import signals
from app.services.collaborators import init_collaborators
from app.tasks.sweeper import run_completion_sweep

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    await init_collaborators()

    stop = asyncio.Event()
    sweeper = None
    if settings.SWEEP_ENABLED:
        sweeper = asyncio.create_task(
            run_completion_sweep(SessionLocal, settings.SWEEP_INTERVAL_SECONDS, stop)
        )

    yield

    stop.set()
    if sweeper:
        await sweeper
    await signals.drain()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Class session booking, waitlist and check-in engine",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(BookingEngineError)
async def booking_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    logger.info("request_rejected", code=exc.code, message=exc.message)
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await get_redis_status(),
    }


@app.get("/metrics", tags=["Health"])
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
