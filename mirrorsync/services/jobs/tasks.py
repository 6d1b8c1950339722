"""
Dramatiq Background Tasks
Time-triggered work that must stay off the webhook request path
"""
import dramatiq
import asyncio
import logging
import httpx
from typing import Any, Dict

from supabase import create_client

from mirrorsync.services.jobs.broker import broker  # noqa: F401  (registers the broker before actors)

logger = logging.getLogger(__name__)


def get_sync_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from mirrorsync.core.config import settings
    from mirrorsync.core.dependencies import build_sync_services

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_seconds),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
    )
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)
    return http_client, build_sync_services(supabase, http_client)


async def _renew_with_cleanup(http_client: httpx.AsyncClient, services) -> Dict[str, Any]:
    """
    Async wrapper that runs the sweep and closes the HTTP client in the same event loop.
    """
    try:
        summary = await services.watch_manager.renew_expiring()
        return summary.model_dump()
    finally:
        await http_client.aclose()


@dramatiq.actor(max_retries=3)
def renew_watches_task():
    """
    Renew every push channel that expires within the configured lead time.

    Individual failures are counted on the subscription, not raised; the task
    itself only fails (and is retried) when the sweep cannot run at all.
    """
    logger.info("🔄 Starting watch renewal sweep")

    http_client, services = get_sync_dependencies()
    try:
        result = asyncio.run(_renew_with_cleanup(http_client, services))
        logger.info(f"✅ Watch renewal sweep complete: {result}")
        return result
    except Exception as e:
        logger.error(f"❌ Watch renewal sweep failed: {e}")
        raise  # Re-raise for Dramatiq retry logic
