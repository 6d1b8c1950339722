"""
Google Calendar provider
events.list (syncToken / timeMin-timeMax), events.watch, channels.stop

Cursor: the nextSyncToken returned on the last page of a listing.
Invalid cursor: HTTP 410 Gone on events.list with a syncToken.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

from mirrorsync.core.errors import CursorInvalidError, MalformedInputError
from mirrorsync.models.domain import ChangePage, RemoteItem, ResourceType, WatchChannel, WatchSubscription
from mirrorsync.services.sync.providers.base import ResourceProvider, parse_millis, window_forward

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_TITLE = "(No title)"


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_boundary(payload: Any) -> Tuple[Optional[datetime], bool]:
    """
    Read an event start/end. Returns (instant, all_day).

    dateTime wins over date; an all-day date becomes midnight UTC.
    """
    if not isinstance(payload, dict):
        return None, False

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        try:
            parsed = datetime.fromisoformat(date_time.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedInputError(f"Invalid dateTime value: {date_time}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed, False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError as e:
            raise MalformedInputError(f"Invalid date value: {date_value}") from e
        return datetime.combine(parsed_date, time.min, tzinfo=timezone.utc), True

    return None, False


class GoogleCalendarProvider(ResourceProvider):
    resource_type = ResourceType.CALENDAR
    supports_parallel_channels = True

    def __init__(self, http_client, retry_policy=None, page_size: int = 250, calendar_id: str = "primary", ttl_seconds: int = 604800):
        super().__init__(http_client, retry_policy, page_size)
        self.calendar_id = calendar_id
        self.ttl_seconds = ttl_seconds

    @property
    def _events_url(self) -> str:
        return f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(self.calendar_id, safe='')}/events"

    async def _list(self, access_token: str, params: Dict[str, Any], context: str) -> ChangePage:
        response = await self._request("GET", self._events_url, access_token, params=params, passthrough=(410,), context=context)

        # 410 Gone means the sync token is expired; caller must do full re-sync
        if response.status_code == 410:
            raise CursorInvalidError(f"Sync token rejected for calendar '{self.calendar_id}'", status_code=410)

        payload = response.json()
        items = [item for item in payload.get("items") or [] if isinstance(item, dict)]
        return ChangePage(
            items=items,
            next_page_token=payload.get("nextPageToken"),
            next_cursor=payload.get("nextSyncToken"),
        )

    async def list_changes(self, access_token: str, cursor: str, page_token: Optional[str] = None) -> ChangePage:
        params: Dict[str, Any] = {
            "syncToken": cursor,
            "showDeleted": "true",
            "singleEvents": "true",
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        return await self._list(access_token, params, "calendar events.list (delta)")

    async def list_window(self, access_token: str, start: datetime, end: datetime, page_token: Optional[str] = None) -> ChangePage:
        params: Dict[str, Any] = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "maxResults": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        return await self._list(access_token, params, "calendar events.list (window)")

    def window_for(self, now: datetime, days: int) -> Tuple[datetime, datetime]:
        return window_forward(now, days)

    def parse_item(self, raw: Dict[str, Any]) -> RemoteItem:
        event_id = raw.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise MalformedInputError("Calendar event without id")
        event_id = event_id.strip()

        if str(raw.get("status") or "").lower() == "cancelled":
            return RemoteItem(external_id=event_id, deleted=True)

        start, all_day = _parse_boundary(raw.get("start"))
        end, _ = _parse_boundary(raw.get("end"))
        return RemoteItem(
            external_id=event_id,
            title=raw.get("summary") or DEFAULT_TITLE,
            description=raw.get("description"),
            start_time=start,
            end_time=end,
            all_day=all_day,
            location=raw.get("location"),
        )

    async def start_watch(self, access_token: str, channel_id: str, address: str, token: Optional[str]) -> WatchChannel:
        body: Dict[str, Any] = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "params": {"ttl": str(self.ttl_seconds)},
        }
        if token:
            body["token"] = token

        response = await self._request("POST", f"{self._events_url}/watch", access_token, json=body, context="calendar events.watch")
        payload = response.json()
        logger.info(f"✅ Calendar channel {channel_id} opened (resource {payload.get('resourceId')})")
        return WatchChannel(
            channel_id=payload.get("id") or channel_id,
            resource_id=payload.get("resourceId"),
            expiration=parse_millis(payload.get("expiration")),
        )

    async def stop_watch(self, access_token: str, watch: WatchSubscription) -> None:
        await self._request(
            "POST",
            f"{GOOGLE_CALENDAR_API_BASE_URL}/channels/stop",
            access_token,
            json={"id": watch.channel_id, "resourceId": watch.resource_id},
            passthrough=(404,),
            context="calendar channels.stop",
        )
