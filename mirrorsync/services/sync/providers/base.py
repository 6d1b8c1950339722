"""
Provider contract for the sync engine.

A provider knows how to talk to one remote resource (a calendar, a mailbox):
list changes since a cursor, list a bounded window, open and close push
channels, and turn raw payloads into RemoteItems. It holds no per-user state;
access tokens are passed in on every call.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from mirrorsync.core.circuit_breakers import RetryPolicy
from mirrorsync.core.errors import TransientError, error_from_response
from mirrorsync.models.domain import ChangePage, RemoteItem, ResourceType, WatchChannel, WatchSubscription

logger = logging.getLogger(__name__)


class ResourceProvider(ABC):
    resource_type: ResourceType

    # Whether two push channels may be open at once for the same resource.
    # When False, opening a new channel replaces the old one provider-side.
    supports_parallel_channels: bool = False

    def __init__(self, http_client: httpx.AsyncClient, retry_policy: Optional[RetryPolicy] = None, page_size: int = 250):
        self.http_client = http_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size

    # ========================================================================
    # CONTRACT
    # ========================================================================

    @abstractmethod
    async def list_changes(self, access_token: str, cursor: str, page_token: Optional[str] = None) -> ChangePage:
        """One page of changes since cursor. Raises CursorInvalidError when the cursor is rejected."""

    @abstractmethod
    async def list_window(
        self,
        access_token: str,
        start: datetime,
        end: datetime,
        page_token: Optional[str] = None,
    ) -> ChangePage:
        """One page of a full listing of [start, end)."""

    @abstractmethod
    def window_for(self, now: datetime, days: int) -> Tuple[datetime, datetime]:
        """Bounded full-resync window anchored at now."""

    @abstractmethod
    def parse_item(self, raw: Dict[str, Any]) -> RemoteItem:
        """Normalize one raw payload. Raises MalformedInputError when it cannot be read."""

    @abstractmethod
    async def start_watch(self, access_token: str, channel_id: str, address: str, token: Optional[str]) -> WatchChannel:
        """Open a push channel delivering to address."""

    @abstractmethod
    async def stop_watch(self, access_token: str, watch: WatchSubscription) -> None:
        """Close a push channel."""

    async def snapshot_cursor(self, access_token: str) -> Optional[str]:
        """Cursor to record before a window listing, for providers whose listing does not return one."""
        return None

    def cursor_is_newer(self, candidate: Optional[str], current: Optional[str]) -> bool:
        """Whether a cursor carried by a notification is strictly newer than the stored one."""
        return False

    # ========================================================================
    # HTTP
    # ========================================================================

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        passthrough: Iterable[int] = (),
        context: str = "",
    ) -> httpx.Response:
        """
        Send one provider request under the retry policy.

        2xx and statuses listed in passthrough are returned to the caller; anything
        else is raised as a typed SyncError.
        """
        return await self.retry_policy.call(
            self._send, method, url, access_token,
            params=params, json=json, passthrough=tuple(passthrough), context=context,
        )

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]],
        json: Optional[Dict[str, Any]],
        passthrough: Tuple[int, ...],
        context: str,
    ) -> httpx.Response:
        try:
            response = await self.http_client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as e:
            raise TransientError(f"{context or url}: {type(e).__name__}: {e}") from e

        if 200 <= response.status_code < 300 or response.status_code in passthrough:
            return response
        raise error_from_response(response, context or url)


def window_forward(now: datetime, days: int) -> Tuple[datetime, datetime]:
    return now, now + timedelta(days=days)


def window_backward(now: datetime, days: int) -> Tuple[datetime, datetime]:
    return now - timedelta(days=days), now


def parse_millis(value: Any) -> Optional[datetime]:
    """Google reports expirations and internal dates as epoch milliseconds (often as strings)."""
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
