"""
Gmail provider
users.history.list, users.messages.list/get, users.getProfile, users.watch, users.stop

Cursor: a mailbox historyId. Invalid cursor: HTTP 404 on history.list.

Messages are mirrored from the INBOX label: title is the Subject, description
the snippet, start = end = the message's internal date.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mirrorsync.core.errors import CursorInvalidError, MalformedInputError
from mirrorsync.models.domain import ChangePage, RemoteItem, ResourceType, WatchChannel, WatchSubscription
from mirrorsync.services.sync.providers.base import ResourceProvider, parse_millis, window_backward

logger = logging.getLogger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
MIRRORED_LABEL = "INBOX"
DEFAULT_SUBJECT = "(No subject)"


def _header(message: Dict[str, Any], name: str) -> Optional[str]:
    headers = (message.get("payload") or {}).get("headers") or []
    for header in headers:
        if isinstance(header, dict) and str(header.get("name", "")).lower() == name.lower():
            return header.get("value")
    return None


class GmailProvider(ResourceProvider):
    resource_type = ResourceType.MAILBOX
    # One watch per mailbox: a new users.watch replaces the previous one.
    supports_parallel_channels = False

    def __init__(self, http_client, retry_policy=None, page_size: int = 100, topic_name: Optional[str] = None):
        super().__init__(http_client, retry_policy, page_size)
        self.topic_name = topic_name

    # ========================================================================
    # MESSAGES
    # ========================================================================

    async def _get_message(self, access_token: str, message_id: str) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            f"{GMAIL_API_BASE_URL}/messages/{message_id}",
            access_token,
            params={"format": "metadata", "metadataHeaders": ["Subject"]},
            passthrough=(404,),
            context="gmail messages.get",
        )
        # Gone between the history entry and the fetch
        if response.status_code == 404:
            return {"id": message_id, "deleted": True}
        return response.json()

    async def _fetch_all(self, access_token: str, changes: Dict[str, bool]) -> List[Dict[str, Any]]:
        items = []
        for message_id, deleted in changes.items():
            if deleted:
                items.append({"id": message_id, "deleted": True})
            else:
                items.append(await self._get_message(access_token, message_id))
        return items

    # ========================================================================
    # LISTINGS
    # ========================================================================

    async def list_changes(self, access_token: str, cursor: str, page_token: Optional[str] = None) -> ChangePage:
        # No labelId filter: an archived message no longer carries INBOX and would be filtered out
        params: Dict[str, Any] = {
            "startHistoryId": cursor,
            "historyTypes": ["messageAdded", "messageDeleted", "labelAdded", "labelRemoved"],
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        response = await self._request(
            "GET", f"{GMAIL_API_BASE_URL}/history", access_token,
            params=params, passthrough=(404,), context="gmail history.list",
        )
        # 404 means startHistoryId is too old; caller must do full re-sync
        if response.status_code == 404:
            raise CursorInvalidError(f"History id {cursor} rejected", status_code=404)

        payload = response.json()

        # Later history entries win for the same message
        changes: Dict[str, bool] = {}
        for record in payload.get("history") or []:
            for added in record.get("messagesAdded") or []:
                message = added.get("message") or {}
                if message.get("id") and MIRRORED_LABEL in (message.get("labelIds") or [MIRRORED_LABEL]):
                    changes[message["id"]] = False
            for removed in record.get("messagesDeleted") or []:
                message_id = (removed.get("message") or {}).get("id")
                if message_id:
                    changes[message_id] = True
            for labelled in record.get("labelsAdded") or []:
                message_id = (labelled.get("message") or {}).get("id")
                if message_id and MIRRORED_LABEL in (labelled.get("labelIds") or []):
                    changes[message_id] = False
            for unlabelled in record.get("labelsRemoved") or []:
                message_id = (unlabelled.get("message") or {}).get("id")
                if message_id and MIRRORED_LABEL in (unlabelled.get("labelIds") or []):
                    changes[message_id] = True

        next_page_token = payload.get("nextPageToken")
        return ChangePage(
            items=await self._fetch_all(access_token, changes),
            next_page_token=next_page_token,
            next_cursor=None if next_page_token else (payload.get("historyId") or cursor),
        )

    async def list_window(self, access_token: str, start: datetime, end: datetime, page_token: Optional[str] = None) -> ChangePage:
        params: Dict[str, Any] = {
            "labelIds": [MIRRORED_LABEL],
            "q": f"after:{int(start.timestamp())} before:{int(end.timestamp())}",
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        response = await self._request("GET", f"{GMAIL_API_BASE_URL}/messages", access_token, params=params, context="gmail messages.list")
        payload = response.json()
        changes = {m["id"]: False for m in payload.get("messages") or [] if isinstance(m, dict) and m.get("id")}
        return ChangePage(
            items=await self._fetch_all(access_token, changes),
            next_page_token=payload.get("nextPageToken"),
        )

    def window_for(self, now: datetime, days: int) -> Tuple[datetime, datetime]:
        return window_backward(now, days)

    async def get_profile(self, access_token: str) -> Dict[str, Any]:
        response = await self._request("GET", f"{GMAIL_API_BASE_URL}/profile", access_token, context="gmail getProfile")
        return response.json()

    async def snapshot_cursor(self, access_token: str) -> Optional[str]:
        """historyId taken before a window listing, so nothing that arrives during the listing is missed."""
        profile = await self.get_profile(access_token)
        history_id = profile.get("historyId")
        return str(history_id) if history_id is not None else None

    def parse_item(self, raw: Dict[str, Any]) -> RemoteItem:
        message_id = raw.get("id")
        if not isinstance(message_id, str) or not message_id:
            raise MalformedInputError("Gmail message without id")

        if raw.get("deleted"):
            return RemoteItem(external_id=message_id, deleted=True)

        try:
            received = parse_millis(raw.get("internalDate"))
        except (TypeError, ValueError) as e:
            raise MalformedInputError(f"Invalid internalDate on message {message_id}") from e

        return RemoteItem(
            external_id=message_id,
            title=_header(raw, "Subject") or DEFAULT_SUBJECT,
            description=raw.get("snippet"),
            start_time=received,
            end_time=received,
        )

    def cursor_is_newer(self, candidate: Optional[str], current: Optional[str]) -> bool:
        if not candidate:
            return False
        if not current:
            return True
        try:
            return int(candidate) > int(current)
        except (TypeError, ValueError):
            return False

    # ========================================================================
    # WATCH
    # ========================================================================

    async def start_watch(self, access_token: str, channel_id: str, address: str, token: Optional[str]) -> WatchChannel:
        """
        Gmail pushes through Pub/Sub, so address and token are configured on the
        topic's push subscription rather than here. The mailbox address becomes
        the resource id used to route notifications back to the user.
        """
        if not self.topic_name:
            raise MalformedInputError("GMAIL_PUBSUB_TOPIC is not configured")

        profile = await self.get_profile(access_token)
        response = await self._request(
            "POST",
            f"{GMAIL_API_BASE_URL}/watch",
            access_token,
            json={
                "topicName": self.topic_name,
                "labelIds": [MIRRORED_LABEL],
                "labelFilterBehavior": "INCLUDE",
            },
            context="gmail users.watch",
        )
        payload = response.json()
        logger.info(f"✅ Gmail watch opened for {profile.get('emailAddress')} (historyId {payload.get('historyId')})")
        return WatchChannel(
            channel_id=channel_id,
            resource_id=(profile.get("emailAddress") or "").lower() or None,
            expiration=parse_millis(payload.get("expiration")),
        )

    async def stop_watch(self, access_token: str, watch: WatchSubscription) -> None:
        await self._request("POST", f"{GMAIL_API_BASE_URL}/stop", access_token, context="gmail users.stop")
