"""
Dramatiq Background Worker
Processes the push-channel renewal sweep off the API process

Usage:
    dramatiq worker -p 2 -t 2

Cron (hourly):
    python -m mirrorsync.services.jobs.run_watch_renewal

Environment: Same as main app (REDIS_URL, SUPABASE_URL, GOOGLE_CLIENT_ID, etc.)
"""
import logging

from mirrorsync.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (if configured)
if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry initialized in worker")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry in worker: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# Import tasks (this registers them with Dramatiq)
try:
    from mirrorsync.services.jobs.broker import broker
    from mirrorsync.services.jobs.tasks import renew_watches_task

    logger.info("✅ MirrorSync worker initialized")
    logger.info("📋 Registered tasks: renew_watches")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise

# This module is imported by Dramatiq CLI
