"""
Dependency Injection
Provides reusable dependencies for FastAPI routes

DEPENDENCIES:
- Supabase client (database + auth)
- HTTP client (one shared httpx.AsyncClient for every Google call)
- Sync services (store, token broker, providers, engine, watch manager, ingress)
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from supabase import create_client, Client

from mirrorsync.core.circuit_breakers import RetryPolicy
from mirrorsync.core.config import Settings, settings
from mirrorsync.core.encryption import TokenCipher
from mirrorsync.models.domain import ResourceType
from mirrorsync.services.sync.engine import IncrementalSyncEngine
from mirrorsync.services.sync.ingress import WebhookIngress
from mirrorsync.services.sync.providers import GmailProvider, GoogleCalendarProvider
from mirrorsync.services.sync.store import MirrorStore
from mirrorsync.services.sync.watch import WatchSubscriptionManager
from mirrorsync.services.tokens import GoogleOAuthClient, TokenBroker

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    """Everything a route or a job needs, wired once per process."""
    store: MirrorStore
    oauth_client: GoogleOAuthClient
    token_broker: TokenBroker
    engine: IncrementalSyncEngine
    watch_manager: WatchSubscriptionManager
    ingress: WebhookIngress


def build_sync_services(supabase: Client, http_client: httpx.AsyncClient, config: Settings = settings) -> SyncServices:
    retry_policy = RetryPolicy.from_settings(config)
    store = MirrorStore(supabase, TokenCipher(config.token_encryption_key))
    oauth_client = GoogleOAuthClient(
        http_client,
        config.google_client_id,
        config.google_client_secret,
        retry_policy=retry_policy,
        token_url=config.google_token_url,
        revoke_url=config.google_revoke_url,
    )
    token_broker = TokenBroker(store, oauth_client, margin_seconds=config.token_refresh_margin_seconds)
    providers = {
        ResourceType.CALENDAR: GoogleCalendarProvider(
            http_client,
            retry_policy,
            page_size=config.sync_page_size,
            calendar_id=config.calendar_id,
            ttl_seconds=config.calendar_watch_ttl_seconds,
        ),
        ResourceType.MAILBOX: GmailProvider(
            http_client,
            retry_policy,
            page_size=min(config.sync_page_size, 500),
            topic_name=config.gmail_pubsub_topic,
        ),
    }
    engine = IncrementalSyncEngine(
        store,
        token_broker,
        providers,
        resync_window_days=config.resync_window_days,
        prune_on_full_resync=config.prune_on_full_resync,
    )
    watch_manager = WatchSubscriptionManager(
        store,
        token_broker,
        engine,
        public_base_url=config.public_base_url,
        webhook_secret=config.webhook_secret,
        renewal_lead_hours=config.watch_renewal_lead_hours,
        failure_threshold=config.watch_failure_threshold,
        notification_retention_days=config.notification_retention_days,
    )
    return SyncServices(
        store=store,
        oauth_client=oauth_client,
        token_broker=token_broker,
        engine=engine,
        watch_manager=watch_manager,
        ingress=WebhookIngress(store, engine),
    )


# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

# Supabase client (singleton)
_supabase_client: Optional[Client] = None

# Shared HTTP client (singleton)
_http_client: Optional[httpx.AsyncClient] = None

# Sync services (singleton)
_sync_services: Optional[SyncServices] = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

async def initialize_clients():
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _sync_services

    logger.info("Initializing global clients...")

    # Supabase
    try:
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key  # Backend uses service role
        )
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    # HTTP client shared by every provider call
    _http_client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    logger.info("✅ HTTP client initialized")

    _sync_services = build_sync_services(_supabase_client, _http_client)
    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _sync_services

    logger.info("Shutting down global clients...")

    if _http_client:
        try:
            await _http_client.aclose()
            logger.info("✅ HTTP client closed")
        except Exception as e:
            logger.error(f"Error closing HTTP client: {e}")

    # Supabase doesn't need explicit cleanup
    _supabase_client = None
    _http_client = None
    _sync_services = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def get_sync_services() -> SyncServices:
    """
    Get the wired sync services for dependency injection.

    Usage:
        @router.post("/sync/{resource_type}")
        async def sync(services: SyncServices = Depends(get_sync_services)):
            return await services.engine.sync(user_id, resource_type)
    """
    if _sync_services is None:
        logger.error("Sync services not initialized")
        raise RuntimeError("Sync services not initialized. Call initialize_clients() first.")

    return _sync_services
