"""
MirrorSync - Google Calendar & Gmail Mirror
===========================================
Version: 1.0.0

FastAPI application entry point.

Architecture:
- mirrorsync/core/: Configuration, dependencies, security, retries
- mirrorsync/middleware/: Error handling, logging, rate limiting
- mirrorsync/models/: Domain models and Pydantic schemas
- mirrorsync/services/: Business logic (tokens, providers, sync engine, watches, jobs)
- mirrorsync/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI

# Startup error handling
try:
    # Import core components
    from mirrorsync.core.config import settings
    from mirrorsync.core.dependencies import initialize_clients, shutdown_clients
    from mirrorsync.core.errors import AuthExpiredError, SyncError

    # Import middleware
    from mirrorsync.middleware.error_handler import (
        ErrorHandlerMiddleware, auth_expired_handler, sync_error_handler
    )
    from mirrorsync.middleware.logging import RequestLoggingMiddleware

    # Import routes
    from mirrorsync.api.v1.routes.health import router as health_router
    from mirrorsync.api.v1.routes.auth import router as auth_router
    from mirrorsync.api.v1.routes.webhook import router as webhook_router
    from mirrorsync.api.v1.routes.watch import router as watch_router
    from mirrorsync.api.v1.routes.sync import router as sync_router
    from mirrorsync.api.v1.routes.events import router as events_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.environment == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,  # 10% of requests for performance monitoring
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# ============================================================================
# LIFECYCLE MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    logger.info("=" * 80)
    logger.info("Starting MirrorSync")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")
    logger.info(f"Webhook base URL: {settings.public_base_url}")

    await initialize_clients()

    logger.info("✅ MirrorSync started successfully")

    yield

    logger.info("Shutting down MirrorSync...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title="MirrorSync API",
    description="Push-driven local mirror of Google Calendar and Gmail",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# ============================================================================
# RATE LIMITING
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from mirrorsync.middleware.rate_limit import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info("✅ Rate limiting enabled")

# ============================================================================
# SYNC ERROR MAPPING
# ============================================================================

# AuthExpiredError is a SyncError; the more specific handler wins
app.add_exception_handler(AuthExpiredError, auth_expired_handler)
app.add_exception_handler(SyncError, sync_error_handler)

# ============================================================================
# MIDDLEWARE (order matters!)
# ============================================================================

# Request logging
app.add_middleware(RequestLoggingMiddleware)

# Global error handler (must be last)
app.add_middleware(ErrorHandlerMiddleware)

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(webhook_router)
app.include_router(watch_router)
app.include_router(sync_router)
app.include_router(events_router)

logger.info("✅ All routes registered")

# ============================================================================
# SENTRY DEBUG ENDPOINT (DEV/STAGING ONLY)
# ============================================================================

if settings.environment != "production":
    @app.get("/sentry-debug")
    async def trigger_sentry_error():
        """
        Test endpoint to verify Sentry error tracking is working.

        SECURITY: Only available in dev/staging (disabled in production)
        """
        division_by_zero = 1 / 0
        return {"should": "never reach here"}

    logger.info("⚠️  DEV MODE: Sentry debug endpoint enabled at /sentry-debug")

# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
