"""
Webhook Ingress Handler
Turns provider push notifications into sync runs

Envelopes:
- Calendar: X-Goog-Channel-ID / X-Goog-Resource-ID / X-Goog-Resource-State /
  X-Goog-Message-Number headers, empty body
- Pub/Sub push (Gmail, or Calendar relayed through Pub/Sub):
  {"message": {"data": base64(json), "messageId": "..."}, "subscription": "..."}

Delivery is at-least-once and unordered, so every notification is checked
against the processed_notifications ledger before it triggers a sync.
"""
import base64
import binascii
import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from mirrorsync.core.errors import AuthExpiredError, MalformedInputError
from mirrorsync.models.domain import ResourceType, WatchSubscription
from mirrorsync.services.sync.channels import parse_channel_id
from mirrorsync.services.sync.engine import IncrementalSyncEngine
from mirrorsync.services.sync.store import MirrorStore

logger = logging.getLogger(__name__)

HANDSHAKE_STATE = "sync"


class Notification(BaseModel):
    """A push notification reduced to what routing and dedup need."""
    resource_type: ResourceType
    message_id: Optional[str] = None
    channel_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_state: Optional[str] = None
    cursor: Optional[str] = None


def parse_calendar_headers(headers: Mapping[str, str]) -> Optional[Notification]:
    """Read a Calendar header envelope. Returns None when the channel header is absent."""
    channel_id = headers.get("x-goog-channel-id")
    if not channel_id:
        return None

    message_number = headers.get("x-goog-message-number")
    return Notification(
        resource_type=ResourceType.CALENDAR,
        message_id=f"{channel_id}:{message_number}" if message_number else None,
        channel_id=channel_id,
        resource_id=headers.get("x-goog-resource-id"),
        resource_state=(headers.get("x-goog-resource-state") or "").lower() or None,
    )


def _decode_data(data: str) -> Dict[str, Any]:
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_") if ("-" in data or "_" in data) else base64.b64decode(padded)
        decoded = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedInputError(f"Undecodable Pub/Sub data: {e}") from e
    if not isinstance(decoded, dict):
        raise MalformedInputError("Pub/Sub data is not a JSON object")
    return decoded


def parse_pubsub_envelope(body: Any, resource_type: ResourceType) -> Notification:
    """
    Read a Pub/Sub push body.

    Raises:
        MalformedInputError: not a Pub/Sub envelope, or data that cannot be decoded
    """
    if not isinstance(body, dict) or not isinstance(body.get("message"), dict):
        raise MalformedInputError("Missing Pub/Sub message")

    message = body["message"]
    data = message.get("data")
    if not isinstance(data, str) or not data:
        raise MalformedInputError("Pub/Sub message has no data")
    payload = _decode_data(data)

    message_id = message.get("messageId") or message.get("message_id")
    if resource_type == ResourceType.MAILBOX:
        email_address = payload.get("emailAddress")
        if not email_address:
            raise MalformedInputError("Gmail notification without emailAddress")
        history_id = payload.get("historyId")
        return Notification(
            resource_type=resource_type,
            message_id=str(message_id) if message_id else None,
            resource_id=str(email_address).lower(),
            cursor=str(history_id) if history_id is not None else None,
        )

    channel_id = payload.get("channelId") or payload.get("channel_id")
    resource_id = payload.get("resourceId") or payload.get("resource_id")
    if not channel_id and not resource_id:
        raise MalformedInputError("Calendar notification without channelId or resourceId")
    return Notification(
        resource_type=resource_type,
        message_id=str(message_id) if message_id else None,
        channel_id=channel_id,
        resource_id=resource_id,
        resource_state=(payload.get("resourceState") or "").lower() or None,
    )


class WebhookIngress:
    def __init__(self, store: MirrorStore, engine: IncrementalSyncEngine):
        self.store = store
        self.engine = engine

    def resolve(self, notification: Notification) -> Optional[WatchSubscription]:
        """Indexed lookup of the subscription a notification belongs to."""
        parsed = parse_channel_id(notification.channel_id)
        if parsed is not None:
            resource_type, user_id = parsed
            if resource_type != notification.resource_type:
                return None
            return self.store.get_watch(user_id, resource_type)

        if notification.resource_id:
            return self.store.find_watch_by_resource(notification.resource_type, notification.resource_id)
        return None

    async def process(self, notification: Notification) -> str:
        """
        Handle one notification after it has been acknowledged.

        Never raises: the provider already got its 2xx, so every failure ends here
        as a log line. Returns a short outcome label.
        """
        try:
            return await self._process(notification)
        except Exception as e:
            logger.exception(f"❌ Webhook processing failed ({notification.resource_type.value}): {e}")
            return "failed"

    async def _process(self, notification: Notification) -> str:
        resource_type = notification.resource_type

        if resource_type == ResourceType.CALENDAR and notification.resource_state == HANDSHAKE_STATE:
            logger.info(f"Channel {notification.channel_id} handshake acknowledged")
            return "handshake"

        watch = self.resolve(notification)
        if watch is None:
            logger.warning(
                f"⚠️  No subscription for {resource_type.value} notification "
                f"(channel={notification.channel_id}, resource={notification.resource_id})"
            )
            return "unknown"

        if notification.message_id:
            first_delivery = self.store.mark_notification_processed(watch.user_id, notification.message_id, resource_type)
            if not first_delivery:
                logger.info(f"Duplicate notification {notification.message_id} for user {watch.user_id}, skipping")
                return "duplicate"

        try:
            await self.engine.sync(watch.user_id, resource_type, notified_cursor=notification.cursor)
        except AuthExpiredError as e:
            logger.warning(f"⚠️  User {watch.user_id} must reconnect before {resource_type.value} can sync: {e}")
            return "reauth_required"
        return "synced"
