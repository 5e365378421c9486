"""
CampaignHQ API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import Base, SessionLocal, engine
from .dependencies import build_provider
from .limiter import limiter
from .logging_config import api_logger
from .middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from .responses import ApiException, api_exception_handler
from .routes import (
    campaigns_router,
    health_router,
    metrics_router,
    tracking_router,
)
from .worker.renderer import TemplateCache
from .worker.scheduler import PeriodicTrigger, run_dispatch_tick

settings = get_settings()

# Create tables (in production, use Alembic migrations instead)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    cache = TemplateCache(ttl_seconds=settings.template_cache_ttl_seconds)
    app.state.template_cache = cache
    trigger = None

    if settings.dispatcher_enabled:
        try:
            provider = build_provider(settings)
        except ValueError as e:
            api_logger.warning("dispatcher_not_started", reason=str(e))
        else:
            trigger = PeriodicTrigger(
                lambda: run_dispatch_tick(SessionLocal, provider, settings, cache=cache),
                interval_seconds=settings.dispatcher_interval_seconds,
            )
            trigger.start()

    yield  # App is running

    if trigger is not None:
        await trigger.stop()


app = FastAPI(
    title="CampaignHQ API",
    description="Email campaign scheduling, batch delivery and engagement metrics",
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

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(campaigns_router)
app.include_router(metrics_router)
app.include_router(tracking_router)
app.include_router(health_router)


@app.get("/")
def root():
    return {
        "message": "CampaignHQ API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
