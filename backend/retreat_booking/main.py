"""
Retreat Booking API - Main Application Entry Point

Booking core for a wellness-retreat business:
- Concurrency-safe seat reservation with optimistic locking
- Stripe checkout and webhook-driven confirmation
- Scheduled cleanup of unpaid bookings and payment reconciliation
- Structured logging with request correlation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from retreat_booking.core.config import get_settings
from retreat_booking.core.exceptions import BookingError
from retreat_booking.core.logging import setup_logging, get_logger
from retreat_booking.core.metrics import metrics_endpoint
from retreat_booking.api.router import api_router
from retreat_booking.api.middleware import RequestLoggingMiddleware
from retreat_booking.infrastructure.redis_client import get_redis, close_redis
from retreat_booking.jobs.scheduler import BookingJobScheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    # Redis only coordinates scheduled jobs
    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Scheduled jobs run without distributed locks")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = BookingJobScheduler()
        scheduler.start()

    yield

    # Cleanup
    if scheduler:
        await scheduler.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Retreat booking API with concurrency-safe reservations and Stripe payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
        headers=exc.headers,
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    redis_client = await get_redis()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": "connected" if redis_client else "disabled",
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
