"""
Incremental Sync Engine
One engine behind both triggers (webhook notification, manual refresh)

Per run:
1. Take the user's queue slot (same user: sequential, different users: parallel)
2. Get an access token from the Token Broker
3. Fetch deltas since the stored cursor, or a bounded full window when there is
   no cursor or the provider rejects it
4. Apply every page: deletions remove rows, everything else is upserted
5. Persist the new cursor only after the last page; any failure leaves the old one
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from mirrorsync.core.concurrency import KeyedLock
from mirrorsync.core.errors import AccessTokenRejectedError, CursorInvalidError, MalformedInputError
from mirrorsync.models.domain import GOOGLE, ChangePage, MirrorRecord, ResourceType, SyncResult, utcnow
from mirrorsync.services.sync.providers.base import ResourceProvider
from mirrorsync.services.sync.store import MirrorStore
from mirrorsync.services.tokens.broker import TokenBroker

logger = logging.getLogger(__name__)

PageFetcher = Callable[[Optional[str]], Awaitable[ChangePage]]


class IncrementalSyncEngine:
    def __init__(
        self,
        store: MirrorStore,
        token_broker: TokenBroker,
        providers: Dict[ResourceType, ResourceProvider],
        resync_window_days: int = 30,
        prune_on_full_resync: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.token_broker = token_broker
        self.providers = providers
        self.resync_window_days = resync_window_days
        self.prune_on_full_resync = prune_on_full_resync
        self.clock = clock
        self._user_queue = KeyedLock()

    def provider_for(self, resource_type: ResourceType) -> ResourceProvider:
        provider = self.providers.get(resource_type)
        if provider is None:
            raise MalformedInputError(f"No provider configured for {resource_type.value}")
        return provider

    # ========================================================================
    # SYNC
    # ========================================================================

    async def sync(
        self,
        user_id: str,
        resource_type: ResourceType,
        force_full: bool = False,
        notified_cursor: Optional[str] = None,
    ) -> SyncResult:
        """
        Bring the user's mirror of resource_type up to date.

        Runs for the same user wait for each other; a run queued behind another
        starts from whatever cursor the previous one persisted.

        Args:
            force_full: ignore the stored cursor and resync the bounded window
            notified_cursor: cursor carried by a push notification; stored after
                the run only if the provider says it is newer

        Raises:
            AuthExpiredError: the user must reconnect
            TransientError / RateLimitedError: retries exhausted, cursor untouched
        """
        async with self._user_queue.hold(user_id):
            provider = self.provider_for(resource_type)
            watch = self.store.get_watch(user_id, resource_type)
            cursor = None if force_full or watch is None else watch.cursor

            token = await self.token_broker.get_valid_token(user_id, GOOGLE)
            try:
                result = await self._run(user_id, provider, token, cursor)
            except AccessTokenRejectedError:
                logger.warning(f"⚠️  Access token rejected mid-sync for user {user_id}, retrying with a fresh token")
                await self.token_broker.invalidate(user_id, GOOGLE, rejected_token=token)
                token = await self.token_broker.get_valid_token(user_id, GOOGLE)
                result = await self._run(user_id, provider, token, cursor)

            if result.cursor:
                self.store.update_cursor(user_id, resource_type, result.cursor)
            if notified_cursor and provider.cursor_is_newer(notified_cursor, result.cursor):
                self.store.update_cursor(user_id, resource_type, notified_cursor)
                result.cursor = notified_cursor

            logger.info(
                f"✅ Synced {resource_type.value} for user {user_id}: "
                f"{result.upserted} upserted, {result.deleted} deleted, {result.skipped} skipped, "
                f"{result.pruned} pruned{' (full resync)' if result.full_resync else ''}"
            )
            return result

    async def _run(self, user_id: str, provider: ResourceProvider, token: str, cursor: Optional[str]) -> SyncResult:
        if cursor:
            try:
                result, _ = await self._apply_pages(
                    user_id, provider, lambda page_token: provider.list_changes(token, cursor, page_token)
                )
                return result
            except CursorInvalidError:
                logger.warning(f"⚠️  Cursor invalidated for user {user_id} ({provider.resource_type.value}), running full resync")
        return await self._full_resync(user_id, provider, token)

    async def _full_resync(self, user_id: str, provider: ResourceProvider, token: str) -> SyncResult:
        start, end = provider.window_for(self.clock(), self.resync_window_days)
        snapshot = await provider.snapshot_cursor(token)

        result, seen = await self._apply_pages(
            user_id, provider, lambda page_token: provider.list_window(token, start, end, page_token)
        )
        result.full_resync = True
        result.cursor = result.cursor or snapshot

        if self.prune_on_full_resync:
            # Rows in the window the provider no longer returns were removed while the cursor was lost
            for record in self.store.list_records_in_range(user_id, start, end, provider.resource_type):
                if record.external_id not in seen:
                    if self.store.delete_record(user_id, provider.resource_type, record.external_id):
                        result.pruned += 1
        return result

    async def _apply_pages(self, user_id: str, provider: ResourceProvider, fetch: PageFetcher):
        result = SyncResult(user_id=user_id, resource_type=provider.resource_type)
        seen: Set[str] = set()
        page_token: Optional[str] = None

        while True:
            page = await fetch(page_token)
            for raw in page.items:
                self._apply_item(user_id, provider, raw, result, seen)
            if page.next_cursor:
                result.cursor = page.next_cursor
            page_token = page.next_page_token
            if not page_token:
                break

        return result, seen

    def _apply_item(
        self,
        user_id: str,
        provider: ResourceProvider,
        raw: Dict[str, Any],
        result: SyncResult,
        seen: Set[str],
    ) -> None:
        resource_type = provider.resource_type
        raw_id = raw.get("id")
        if isinstance(raw_id, str):
            seen.add(raw_id)

        try:
            item = provider.parse_item(raw)
        except (MalformedInputError, ValidationError) as e:
            logger.warning(f"⚠️  Skipping malformed {resource_type.value} item {raw_id!r} for user {user_id}: {e}")
            result.skipped += 1
            return

        seen.add(item.external_id)
        if item.deleted:
            if self.store.delete_record(user_id, resource_type, item.external_id):
                result.deleted += 1
            result.applied += 1
            return

        if item.start_time is None or item.end_time is None:
            result.skipped += 1
            return

        self.store.upsert_record(user_id, resource_type, item)
        result.upserted += 1
        result.applied += 1

    # ========================================================================
    # READ CONTRACT FOR DOWNSTREAM CONSUMERS
    # ========================================================================

    def list_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        resource_type: Optional[ResourceType] = ResourceType.CALENDAR,
    ) -> List[MirrorRecord]:
        return self.store.list_records_in_range(user_id, start, end, resource_type)

    def set_task_link(
        self,
        user_id: str,
        external_id: str,
        task_id: Optional[str],
        resource_type: ResourceType = ResourceType.CALENDAR,
    ) -> bool:
        return self.store.set_task_link(user_id, resource_type, external_id, task_id)
