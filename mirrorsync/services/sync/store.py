"""
Local Mirror Store
Typed data access for the four sync tables (Supabase / PostgREST)

Tables (see supabase/migrations/001_sync_engine.sql):
- oauth_credentials        (user_id, provider)               Token Broker
- watch_subscriptions      (user_id, resource_type)          Watch Manager
- mirror_records           (user_id, resource_type, external_id)
- processed_notifications  (user_id, message_id)             webhook dedup ledger

Every method takes and returns domain models; rows are dicts only inside this module.
Timestamps are written as ISO-8601 UTC strings.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from mirrorsync.core.encryption import TokenCipher
from mirrorsync.models.domain import (
    Credential,
    MirrorRecord,
    ProcessedNotification,
    RemoteItem,
    ResourceType,
    WatchSubscription,
    utcnow,
)

logger = logging.getLogger(__name__)

CREDENTIALS_TABLE = "oauth_credentials"
WATCHES_TABLE = "watch_subscriptions"
RECORDS_TABLE = "mirror_records"
NOTIFICATIONS_TABLE = "processed_notifications"


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _first(result) -> Optional[Dict[str, Any]]:
    if result.data and len(result.data) > 0:
        return result.data[0]
    return None


class MirrorStore:
    """Supabase-backed store. One instance per process, shared by all components."""

    def __init__(self, supabase, cipher: Optional[TokenCipher] = None):
        self.supabase = supabase
        self.cipher = cipher or TokenCipher()

    # ========================================================================
    # CREDENTIALS
    # ========================================================================

    def get_credential(self, user_id: str, provider: str) -> Optional[Credential]:
        result = (
            self.supabase.table(CREDENTIALS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("provider", provider)
            .limit(1)
            .execute()
        )
        row = _first(result)
        if not row:
            return None
        row["access_token"] = self.cipher.decrypt(row.get("access_token"))
        row["refresh_token"] = self.cipher.decrypt(row.get("refresh_token"))
        row["scopes"] = row.get("scopes") or []
        return Credential.model_validate(row)

    def save_credential(self, credential: Credential) -> Credential:
        payload = {
            "user_id": credential.user_id,
            "provider": credential.provider,
            "access_token": self.cipher.encrypt(credential.access_token),
            "refresh_token": self.cipher.encrypt(credential.refresh_token),
            "expires_at": _iso(credential.expires_at),
            "scopes": credential.scopes,
            "needs_reauth": credential.needs_reauth,
            "updated_at": _iso(utcnow()),
        }
        self.supabase.table(CREDENTIALS_TABLE).upsert(payload, on_conflict="user_id,provider").execute()
        logger.info(f"✅ Saved {credential.provider} credential for user {credential.user_id}")
        return credential

    def update_access_token(
        self,
        user_id: str,
        provider: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a refreshed token. The refresh token is only replaced when rotated."""
        payload: Dict[str, Any] = {
            "access_token": self.cipher.encrypt(access_token),
            "expires_at": _iso(expires_at),
            "needs_reauth": False,
            "updated_at": _iso(utcnow()),
        }
        if refresh_token:
            payload["refresh_token"] = self.cipher.encrypt(refresh_token)
        (
            self.supabase.table(CREDENTIALS_TABLE)
            .update(payload)
            .eq("user_id", user_id)
            .eq("provider", provider)
            .execute()
        )

    def expire_access_token(self, user_id: str, provider: str) -> None:
        (
            self.supabase.table(CREDENTIALS_TABLE)
            .update({"expires_at": _iso(utcnow()), "updated_at": _iso(utcnow())})
            .eq("user_id", user_id)
            .eq("provider", provider)
            .execute()
        )

    def mark_needs_reauth(self, user_id: str, provider: str) -> None:
        (
            self.supabase.table(CREDENTIALS_TABLE)
            .update({"needs_reauth": True, "updated_at": _iso(utcnow())})
            .eq("user_id", user_id)
            .eq("provider", provider)
            .execute()
        )
        logger.warning(f"⚠️  Credential for user {user_id} ({provider}) flagged for reauthorization")

    def delete_credential(self, user_id: str, provider: str) -> None:
        (
            self.supabase.table(CREDENTIALS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("provider", provider)
            .execute()
        )

    # ========================================================================
    # WATCH SUBSCRIPTIONS
    # ========================================================================

    def get_watch(self, user_id: str, resource_type: ResourceType) -> Optional[WatchSubscription]:
        result = (
            self.supabase.table(WATCHES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .limit(1)
            .execute()
        )
        row = _first(result)
        return WatchSubscription.model_validate(row) if row else None

    def find_watch_by_resource(self, resource_type: ResourceType, resource_id: str) -> Optional[WatchSubscription]:
        """Indexed lookup by provider-side resource id (Gmail: the mailbox address)."""
        result = (
            self.supabase.table(WATCHES_TABLE)
            .select("*")
            .eq("resource_type", resource_type.value)
            .eq("resource_id", resource_id)
            .limit(1)
            .execute()
        )
        row = _first(result)
        return WatchSubscription.model_validate(row) if row else None

    def save_watch(self, watch: WatchSubscription, include_cursor: bool = True) -> WatchSubscription:
        """
        Insert or supersede the subscription for (user, resource_type).

        With include_cursor=False the stored cursor column is left untouched.
        """
        payload: Dict[str, Any] = {
            "user_id": watch.user_id,
            "resource_type": watch.resource_type.value,
            "channel_id": watch.channel_id,
            "resource_id": watch.resource_id,
            "expiration": _iso(watch.expiration),
            "consecutive_failures": watch.consecutive_failures,
            "needs_reauth": watch.needs_reauth,
            "updated_at": _iso(utcnow()),
        }
        if include_cursor:
            payload["cursor"] = watch.cursor
        self.supabase.table(WATCHES_TABLE).upsert(payload, on_conflict="user_id,resource_type").execute()
        return watch

    def update_cursor(self, user_id: str, resource_type: ResourceType, cursor: str) -> None:
        (
            self.supabase.table(WATCHES_TABLE)
            .update({"cursor": cursor, "updated_at": _iso(utcnow())})
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .execute()
        )

    def record_renewal_failure(self, user_id: str, resource_type: ResourceType, threshold: int) -> Tuple[int, bool]:
        """
        Count one failed renewal. Returns (consecutive_failures, flagged).

        Reaching the threshold flags the subscription so later sweeps skip it.
        """
        watch = self.get_watch(user_id, resource_type)
        if watch is None:
            return 0, False
        failures = watch.consecutive_failures + 1
        flagged = failures >= threshold
        (
            self.supabase.table(WATCHES_TABLE)
            .update({
                "consecutive_failures": failures,
                "needs_reauth": flagged,
                "updated_at": _iso(utcnow()),
            })
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .execute()
        )
        return failures, flagged

    def list_expiring_watches(self, before: datetime) -> List[WatchSubscription]:
        result = (
            self.supabase.table(WATCHES_TABLE)
            .select("*")
            .eq("needs_reauth", False)
            .lte("expiration", _iso(before))
            .order("expiration")
            .execute()
        )
        return [WatchSubscription.model_validate(row) for row in result.data or []]

    def list_watches_for_user(self, user_id: str) -> List[WatchSubscription]:
        result = self.supabase.table(WATCHES_TABLE).select("*").eq("user_id", user_id).execute()
        return [WatchSubscription.model_validate(row) for row in result.data or []]

    def delete_watch(self, user_id: str, resource_type: ResourceType) -> None:
        (
            self.supabase.table(WATCHES_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .execute()
        )

    # ========================================================================
    # MIRROR RECORDS
    # ========================================================================

    def get_record(self, user_id: str, resource_type: ResourceType, external_id: str) -> Optional[MirrorRecord]:
        result = (
            self.supabase.table(RECORDS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .eq("external_id", external_id)
            .limit(1)
            .execute()
        )
        row = _first(result)
        return MirrorRecord.model_validate(row) if row else None

    def upsert_record(self, user_id: str, resource_type: ResourceType, item: RemoteItem) -> None:
        """
        Insert or overwrite the provider-owned fields of one record.

        linked_task_id is not part of the payload, so an existing link survives.
        """
        payload = {
            "user_id": user_id,
            "resource_type": resource_type.value,
            "external_id": item.external_id,
            "title": item.title,
            "description": item.description,
            "start_time": _iso(item.start_time),
            "end_time": _iso(item.end_time),
            "all_day": item.all_day,
            "location": item.location,
            "updated_at": _iso(utcnow()),
        }
        (
            self.supabase.table(RECORDS_TABLE)
            .upsert(payload, on_conflict="user_id,resource_type,external_id")
            .execute()
        )

    def delete_record(self, user_id: str, resource_type: ResourceType, external_id: str) -> bool:
        """Delete one record. Returns False when it was already absent."""
        result = (
            self.supabase.table(RECORDS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .eq("external_id", external_id)
            .execute()
        )
        return bool(result.data)

    def delete_records_for(self, user_id: str, resource_type: ResourceType) -> None:
        (
            self.supabase.table(RECORDS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .execute()
        )

    def list_records_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        resource_type: Optional[ResourceType] = None,
    ) -> List[MirrorRecord]:
        """Records overlapping [start, end), ordered by start time."""
        query = (
            self.supabase.table(RECORDS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .lt("start_time", _iso(end))
            .gt("end_time", _iso(start))
        )
        if resource_type is not None:
            query = query.eq("resource_type", resource_type.value)
        result = query.order("start_time").execute()
        return [MirrorRecord.model_validate(row) for row in result.data or []]

    def set_task_link(
        self,
        user_id: str,
        resource_type: ResourceType,
        external_id: str,
        task_id: Optional[str],
    ) -> bool:
        """The only write other parts of the product may make to a mirror row."""
        result = (
            self.supabase.table(RECORDS_TABLE)
            .update({"linked_task_id": task_id})
            .eq("user_id", user_id)
            .eq("resource_type", resource_type.value)
            .eq("external_id", external_id)
            .execute()
        )
        return bool(result.data)

    # ========================================================================
    # NOTIFICATION LEDGER
    # ========================================================================

    def mark_notification_processed(self, user_id: str, message_id: str, resource_type: ResourceType) -> bool:
        """
        Insert-if-absent into the dedup ledger.

        Returns True when this call created the row (first delivery), False for a
        redelivery. Relies on the (user_id, message_id) primary key.
        """
        note = ProcessedNotification(user_id=user_id, message_id=message_id, resource_type=resource_type)
        payload = note.model_dump(mode="json")
        result = (
            self.supabase.table(NOTIFICATIONS_TABLE)
            .upsert(payload, on_conflict="user_id,message_id", ignore_duplicates=True)
            .execute()
        )
        return bool(result.data)


    def prune_processed_notifications(self, older_than: datetime) -> int:
        """Drop ledger rows processed before older_than. Returns how many were removed."""
        result = (
            self.supabase.table(NOTIFICATIONS_TABLE)
            .delete()
            .lt("processed_at", _iso(older_than))
            .execute()
        )
        return len(result.data or [])

    def delete_notifications_for(self, user_id: str, resource_type: Optional[ResourceType] = None) -> None:
        query = self.supabase.table(NOTIFICATIONS_TABLE).delete().eq("user_id", user_id)
        if resource_type is not None:
            query = query.eq("resource_type", resource_type.value)
        query.execute()
