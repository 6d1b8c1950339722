"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase project holds credentials, watch subscriptions, the mirror and the dedup ledger
- Google is the only provider (Calendar + Gmail) behind the sync engine
- Every tuning knob of the engine (windows, lead times, thresholds) lives here, not in the core logic

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
- OAuth tokens encrypted at rest when TOKEN_ENCRYPTION_KEY is set
"""
from typing import Optional
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings.
    Validates all environment variables at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    public_base_url: str = Field(default="http://localhost:8080", description="Public URL the provider pushes notifications to")

    # ============================================================================
    # DATABASE (Supabase)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_anon_key: Optional[str] = Field(default=None, description="Supabase anonymous key")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # ============================================================================
    # OAUTH (Google)
    # ============================================================================

    google_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID")
    google_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token", description="Google token endpoint")
    google_revoke_url: str = Field(default="https://oauth2.googleapis.com/revoke", description="Google revoke endpoint")
    token_refresh_margin_seconds: int = Field(default=120, description="Refresh access tokens this long before they expire")
    token_encryption_key: Optional[str] = Field(default=None, description="Fernet key for tokens at rest (optional)")

    # ============================================================================
    # PUSH NOTIFICATIONS
    # ============================================================================

    webhook_secret: Optional[str] = Field(default=None, description="Shared secret expected on inbound webhooks")
    gmail_pubsub_topic: Optional[str] = Field(default=None, description="Pub/Sub topic Gmail publishes mailbox changes to")
    calendar_id: str = Field(default="primary", description="Calendar mirrored for each user")
    calendar_watch_ttl_seconds: int = Field(default=604800, description="Requested TTL for Calendar channels (provider caps it)")
    watch_renewal_lead_hours: int = Field(default=24, description="Renew channels expiring within this many hours")
    watch_failure_threshold: int = Field(default=3, description="Consecutive renewal failures before flagging for reauthorization")
    notification_retention_days: int = Field(default=7, description="Days processed notification ids are kept for dedup")

    # ============================================================================
    # SYNC ENGINE
    # ============================================================================

    resync_window_days: int = Field(default=30, description="Bounded window for full resyncs")
    prune_on_full_resync: bool = Field(default=True, description="Delete mirror rows a full resync no longer returns")
    sync_page_size: int = Field(default=250, description="Page size requested from the provider")

    # ============================================================================
    # ERROR / BACKOFF POLICY
    # ============================================================================

    provider_timeout_seconds: float = Field(default=20.0, description="Timeout for a single provider call")
    retry_max_attempts: int = Field(default=3, description="Attempts for transient and rate-limited provider failures")
    retry_backoff_multiplier: float = Field(default=1.0, description="Exponential backoff multiplier (seconds)")
    retry_backoff_max_seconds: float = Field(default=30.0, description="Upper bound for a single backoff wait")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (Dramatiq broker)")
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    manual_sync_rate_limit: str = Field(default="10/minute", description="Rate limit for manual refresh")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        - Warn if running in production without Sentry
        - Warn if debug mode enabled in production
        - Warn when webhook or OAuth secrets are missing
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.webhook_secret:
            logger.warning("⚠️  WEBHOOK_SECRET not set. Inbound notifications will not be authenticated.")

        if not self.google_client_id or not self.google_client_secret:
            logger.warning("⚠️  Google OAuth client not configured. Token refresh will fail.")

        logger.info("=" * 80)
        logger.info("MirrorSync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"Public base URL: {self.public_base_url}")
        logger.info(f"Resync window: {self.resync_window_days} days")
        logger.info(f"Watch renewal lead: {self.watch_renewal_lead_hours} hours")
        logger.info(f"Notification ledger retention: {self.notification_retention_days} days")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Gmail Pub/Sub: {'✅ Configured' if self.gmail_pubsub_topic else '❌ Not configured'}")
        logger.info(f"Token encryption: {'✅ Enabled' if self.token_encryption_key else '❌ Disabled'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self


# Global settings instance
settings = Settings()
