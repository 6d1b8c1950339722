"""
Watch Subscription Manager
Opens, renews and closes push channels; runs the renewal sweep

A renewal opens the new channel first and only then, once it is persisted,
stops the old one (for providers that allow two channels at once). Renewals never
write the cursor column; a first subscription seeds the mirror with one full
bounded-window sync.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from mirrorsync.core.errors import AuthExpiredError, SyncError
from mirrorsync.models.domain import GOOGLE, ResourceType, WatchSubscription, utcnow
from mirrorsync.models.schemas.watch import RenewalSummary, WatchStatus
from mirrorsync.services.sync.channels import make_channel_id
from mirrorsync.services.sync.engine import IncrementalSyncEngine
from mirrorsync.services.sync.providers.base import ResourceProvider
from mirrorsync.services.sync.store import MirrorStore
from mirrorsync.services.tokens.broker import TokenBroker

logger = logging.getLogger(__name__)


class WatchSubscriptionManager:
    def __init__(
        self,
        store: MirrorStore,
        token_broker: TokenBroker,
        engine: IncrementalSyncEngine,
        public_base_url: str,
        webhook_secret: Optional[str] = None,
        renewal_lead_hours: int = 24,
        failure_threshold: int = 3,
        notification_retention_days: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.token_broker = token_broker
        self.engine = engine
        self.public_base_url = public_base_url.rstrip("/")
        self.webhook_secret = webhook_secret
        self.renewal_lead_hours = renewal_lead_hours
        self.failure_threshold = failure_threshold
        self.notification_retention_days = notification_retention_days
        self.clock = clock

    def address_for(self, resource_type: ResourceType) -> str:
        return f"{self.public_base_url}/webhooks/google/{resource_type.value}"

    def _provider(self, resource_type: ResourceType) -> ResourceProvider:
        return self.engine.provider_for(resource_type)

    # ========================================================================
    # CREATE / RENEW
    # ========================================================================

    async def create_or_renew(self, user_id: str, resource_type: ResourceType) -> WatchSubscription:
        provider = self._provider(resource_type)
        existing = self.store.get_watch(user_id, resource_type)

        token = await self.token_broker.get_valid_token(user_id, GOOGLE)
        channel = await provider.start_watch(
            token,
            make_channel_id(resource_type, user_id),
            self.address_for(resource_type),
            self.webhook_secret,
        )

        watch = WatchSubscription(
            user_id=user_id,
            resource_type=resource_type,
            channel_id=channel.channel_id,
            resource_id=channel.resource_id,
            expiration=channel.expiration,
            cursor=existing.cursor if existing else None,
        )
        self.store.save_watch(watch, include_cursor=existing is None)
        if existing is not None:
            # A sync may have advanced the cursor while the channel was opening
            current = self.store.get_watch(user_id, resource_type)
            if current is not None:
                watch.cursor = current.cursor
        logger.info(
            f"✅ {'Renewed' if existing else 'Opened'} {resource_type.value} channel {watch.channel_id} "
            f"for user {user_id} (expires {watch.expiration})"
        )

        if existing and provider.supports_parallel_channels and existing.channel_id != watch.channel_id:
            await self._stop_channel(provider, token, existing)

        if watch.cursor is None:
            try:
                result = await self.engine.sync(user_id, resource_type, force_full=True)
                watch.cursor = result.cursor
            except SyncError as e:
                # The next notification finds no cursor and runs the full sync itself
                logger.error(f"❌ Initial sync failed for user {user_id} ({resource_type.value}): {e}")

        return watch

    async def _stop_channel(self, provider: ResourceProvider, token: str, watch: WatchSubscription) -> None:
        try:
            await provider.stop_watch(token, watch)
            logger.info(f"Stopped {watch.resource_type.value} channel {watch.channel_id}")
        except SyncError as e:
            logger.warning(f"⚠️  Failed to stop channel {watch.channel_id}: {e}")

    # ========================================================================
    # STOP
    # ========================================================================

    async def stop(self, user_id: str, resource_type: ResourceType) -> None:
        """Best-effort channel stop, then drop the subscription and its mirror rows."""
        watch = self.store.get_watch(user_id, resource_type)
        if watch is not None:
            provider = self._provider(resource_type)
            try:
                token = await self.token_broker.get_valid_token(user_id, GOOGLE)
                await self._stop_channel(provider, token, watch)
            except SyncError as e:
                logger.warning(f"⚠️  Cannot stop channel {watch.channel_id} remotely: {e}")

        self._drop_local_state(user_id, resource_type)
        logger.info(f"Stopped watching {resource_type.value} for user {user_id}")

    async def disconnect(self, user_id: str) -> None:
        """Stop every channel the user has, then revoke the grant."""
        try:
            for watch in self.store.list_watches_for_user(user_id):
                await self.stop(user_id, watch.resource_type)
            self.store.delete_notifications_for(user_id)
        finally:
            await self.token_broker.revoke(user_id, GOOGLE)

    def _drop_local_state(self, user_id: str, resource_type: ResourceType) -> None:
        self.store.delete_watch(user_id, resource_type)
        self.store.delete_records_for(user_id, resource_type)
        self.store.delete_notifications_for(user_id, resource_type)

    # ========================================================================
    # RENEWAL SWEEP
    # ========================================================================

    async def renew_expiring(self, now: Optional[datetime] = None) -> RenewalSummary:
        """
        Renew every unflagged subscription expiring within the lead time.

        - Success resets the failure counter (the renewed row is written fresh)
        - AuthExpiredError deletes the subscription and its mirror rows; the user has to reconnect
        - Any other failure is counted; reaching the threshold flags the row
        - Finally, ledger rows older than the retention period are pruned
        """
        now = now or self.clock()
        due = self.store.list_expiring_watches(now + timedelta(hours=self.renewal_lead_hours))
        summary = RenewalSummary(due=len(due))

        for watch in due:
            try:
                await self.create_or_renew(watch.user_id, watch.resource_type)
                summary.renewed += 1
            except AuthExpiredError as e:
                logger.warning(f"⚠️  Removing {watch.resource_type.value} subscription for user {watch.user_id}: {e}")
                self._drop_local_state(watch.user_id, watch.resource_type)
                summary.removed += 1
            except Exception as e:
                logger.exception(f"❌ Renewal failed for user {watch.user_id} ({watch.resource_type.value}): {e}")
                failures, flagged = self.store.record_renewal_failure(
                    watch.user_id, watch.resource_type, self.failure_threshold
                )
                summary.failed += 1
                if flagged:
                    logger.error(
                        f"❌ {watch.resource_type.value} subscription for user {watch.user_id} flagged "
                        f"after {failures} consecutive failures"
                    )
                    summary.flagged += 1

        summary.pruned_notifications = self.prune_notifications(now)

        logger.info(
            f"Renewal sweep: {summary.due} due, {summary.renewed} renewed, {summary.failed} failed, "
            f"{summary.flagged} flagged, {summary.removed} removed, {summary.pruned_notifications} ledger rows pruned"
        )
        return summary

    def prune_notifications(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        pruned = self.store.prune_processed_notifications(now - timedelta(days=self.notification_retention_days))
        if pruned:
            logger.info(f"Pruned {pruned} processed notification ids")
        return pruned

    # ========================================================================
    # STATUS
    # ========================================================================

    def status(self, user_id: str, resource_type: ResourceType) -> WatchStatus:
        watch = self.store.get_watch(user_id, resource_type)
        if watch is None:
            return WatchStatus(resource_type=resource_type.value, state="none", active=False)

        if watch.needs_reauth:
            state = "flagged"
        elif watch.is_expired(self.clock()):
            state = "expired"
        else:
            state = "active"

        return WatchStatus(
            resource_type=resource_type.value,
            state=state,
            active=state == "active",
            channel_id=watch.channel_id,
            expiration=watch.expiration,
            has_cursor=watch.cursor is not None,
            consecutive_failures=watch.consecutive_failures,
        )
