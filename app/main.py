"""
Movietrack API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import engine, Base, SessionLocal
from .logging_config import worker_logger
from .middleware import SecurityHeadersMiddleware, RequestLoggingMiddleware
from .limiter import limiter
from .responses import ApiException, api_exception_handler
from .routes import auth_router, movies_router, reminders_router
from .services.mailer import get_mailer
from .services.storage import get_storage
from .worker.sweeps import build_sweeps

settings = get_settings()

# Create tables (in production, use Alembic migrations instead)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Startup
    sweeps = []
    if settings.background_jobs_enabled:
        sweeps = build_sweeps(settings, SessionLocal, get_storage(), get_mailer())
        for sweep in sweeps:
            sweep.start_background()
    else:
        worker_logger.info("Background sweeps disabled")
    app.state.sweeps = sweeps

    yield  # App is running

    # Shutdown: no tick may outlive the database connection
    for sweep in sweeps:
        sweep.stop()


app = FastAPI(
    title="Movietrack API",
    description="Backend API for tracking movies and their release reminders",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ApiException, api_exception_handler)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware (only in debug mode)
if settings.debug:
    app.add_middleware(RequestLoggingMiddleware)

# CORS - Properly configured with specific methods
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(auth_router)
app.include_router(movies_router)
app.include_router(reminders_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": "1.0.0",
        "sweeps": {sweep.name: sweep.running for sweep in getattr(app.state, "sweeps", [])},
    }


@app.get("/")
def root():
    """Root endpoint redirects to API docs."""
    return {
        "message": "Movietrack API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
