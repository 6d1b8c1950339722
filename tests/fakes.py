"""
In-memory stand-ins for Supabase, the Google Calendar API and the OAuth client.
"""
import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from mirrorsync.core.errors import AccessTokenRejectedError, CursorInvalidError
from mirrorsync.models.domain import ChangePage, TokenGrant, WatchChannel, WatchSubscription, utcnow
from mirrorsync.services.sync.channels import parse_channel_id
from mirrorsync.services.sync.providers.google_calendar import GoogleCalendarProvider

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Supabase (PostgREST table API subset used by MirrorStore)
# =============================================================================

def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


@dataclass
class FakeResult:
    data: List[Dict[str, Any]]


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.ignore_duplicates = False
        self.filters: List[Tuple[str, str, Any]] = []
        self.order_by: Optional[Tuple[str, bool]] = None
        self.row_limit: Optional[int] = None

    # operations
    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None, ignore_duplicates: bool = False):
        self.op, self.payload = "upsert", payload
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def _filter(self, op: str, column: str, value: Any):
        self.filters.append((op, column, value))
        return self

    def eq(self, column, value):
        return self._filter("eq", column, value)

    def neq(self, column, value):
        return self._filter("neq", column, value)

    def lt(self, column, value):
        return self._filter("lt", column, value)

    def lte(self, column, value):
        return self._filter("lte", column, value)

    def gt(self, column, value):
        return self._filter("gt", column, value)

    def gte(self, column, value):
        return self._filter("gte", column, value)

    def in_(self, column, values):
        return self._filter("in", column, list(values))

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.row_limit = count
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        for op, column, value in self.filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "neq" and current == value:
                return False
            if op == "in" and current not in value:
                return False
            if op in ("lt", "lte", "gt", "gte"):
                if current is None:
                    return False
                left, right = _comparable(current), _comparable(value)
                if op == "lt" and not left < right:
                    return False
                if op == "lte" and not left <= right:
                    return False
                if op == "gt" and not left > right:
                    return False
                if op == "gte" and not left >= right:
                    return False
        return True

    def execute(self) -> FakeResult:
        rows = self.db.tables.setdefault(self.table, [])
        self.db.calls.append((self.table, self.op))

        if self.op == "select":
            found = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                found.sort(key=lambda r: _comparable(r.get(column)), reverse=desc)
            if self.row_limit is not None:
                found = found[: self.row_limit]
            return FakeResult(found)

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            for p in payloads:
                rows.append(copy.deepcopy(p))
            return FakeResult(copy.deepcopy(payloads))

        if self.op == "upsert":
            count = self.db.upsert_counts[self.table] = self.db.upsert_counts.get(self.table, 0) + 1
            failure = self.db.fail_upsert.get(self.table)
            if failure is not None and failure[0] == count:
                del self.db.fail_upsert[self.table]
                raise failure[1]
            keys = (self.on_conflict or "id").split(",")
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for p in payloads:
                existing = next((r for r in rows if all(r.get(k) == p.get(k) for k in keys)), None)
                if existing is None:
                    rows.append(copy.deepcopy(p))
                    written.append(copy.deepcopy(p))
                elif not self.ignore_duplicates:
                    existing.update(copy.deepcopy(p))
                    written.append(copy.deepcopy(existing))
            return FakeResult(written)

        if self.op == "update":
            updated = []
            for r in rows:
                if self._matches(r):
                    r.update(copy.deepcopy(self.payload))
                    updated.append(copy.deepcopy(r))
            return FakeResult(updated)

        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResult(removed)

        raise ValueError(f"Unsupported operation {self.op}")


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.upsert_counts: Dict[str, int] = {}
        # table -> (nth upsert that raises once, error)
        self.fail_upsert: Dict[str, Tuple[int, Exception]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.get(name, [])


# =============================================================================
# Google OAuth
# =============================================================================

class FakeOAuthClient:
    def __init__(self):
        self.refresh_calls = 0
        self.refresh_error: Optional[Exception] = None
        self.refresh_delay = 0.0
        self.rotate_refresh_token: Optional[str] = None
        self.revoked: List[str] = []
        self.revoke_error: Optional[Exception] = None
        self.exchanged: List[Tuple[str, str]] = []

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenGrant(
            access_token=f"fresh-{self.refresh_calls}",
            expires_at=utcnow() + timedelta(hours=1),
            refresh_token=self.rotate_refresh_token,
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self.exchanged.append((code, redirect_uri))
        return TokenGrant(
            access_token="exchanged-access",
            expires_at=utcnow() + timedelta(hours=1),
            refresh_token="exchanged-refresh",
            scopes=["https://www.googleapis.com/auth/calendar.readonly"],
        )

    async def revoke(self, token: str) -> None:
        self.revoked.append(token)
        if self.revoke_error is not None:
            raise self.revoke_error


# =============================================================================
# Google Calendar (scripted)
# =============================================================================

def event(event_id: str, start: datetime, hours: int = 1, summary: str = "Meeting", status: str = "confirmed") -> Dict[str, Any]:
    return {
        "id": event_id,
        "status": status,
        "summary": summary,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": (start + timedelta(hours=hours)).isoformat()},
    }


def cancelled(event_id: str) -> Dict[str, Any]:
    return {"id": event_id, "status": "cancelled"}


@dataclass
class Script:
    """Pages of raw items plus the cursor reported on the last page."""
    pages: List[List[Dict[str, Any]]]
    next_cursor: Optional[str] = None
    fail_at_page: Optional[int] = None
    error: Optional[Exception] = None


class FakeCalendarProvider(GoogleCalendarProvider):
    """Real Calendar parsing, scripted network."""

    def __init__(self):
        super().__init__(http_client=None)
        self.deltas: Dict[str, Script] = {}
        self.window = Script(pages=[[]], next_cursor="window-cursor")
        self.invalid_cursors: Set[str] = set()
        self.rejected_tokens: Set[str] = set()
        self.watch_failures: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, Optional[str], Optional[str]]] = []
        self.tokens_seen: List[str] = []
        self.started: List[Tuple[str, str, Optional[str]]] = []
        self.stopped: List[str] = []
        self.on_start_watch: Optional[Callable[[str], None]] = None
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    async def _wait_gate(self):
        if self.gate is not None:
            gate, self.gate = self.gate, None
            self.entered.set()
            await gate.wait()

    def _page(self, script: Script, page_token: Optional[str]) -> ChangePage:
        index = int(page_token or 0)
        if script.fail_at_page == index:
            raise script.error
        last = index + 1 >= len(script.pages)
        return ChangePage(
            items=copy.deepcopy(script.pages[index]),
            next_page_token=None if last else str(index + 1),
            next_cursor=script.next_cursor if last else None,
        )

    async def list_changes(self, access_token, cursor, page_token=None):
        self.calls.append(("delta", cursor, page_token))
        self.tokens_seen.append(access_token)
        await self._wait_gate()
        if access_token in self.rejected_tokens:
            raise AccessTokenRejectedError("calendar events.list: HTTP 401", status_code=401)
        if cursor in self.invalid_cursors:
            raise CursorInvalidError("Sync token rejected", status_code=410)
        return self._page(self.deltas[cursor], page_token)

    async def list_window(self, access_token, start, end, page_token=None):
        self.calls.append(("window", None, page_token))
        self.tokens_seen.append(access_token)
        await self._wait_gate()
        return self._page(self.window, page_token)

    async def start_watch(self, access_token, channel_id, address, token):
        parsed = parse_channel_id(channel_id)
        user_id = parsed[1] if parsed else None
        if user_id in self.watch_failures:
            raise self.watch_failures[user_id]
        self.started.append((channel_id, address, token))
        if self.on_start_watch is not None:
            self.on_start_watch(user_id)
        return WatchChannel(
            channel_id=channel_id,
            resource_id=f"res-{channel_id}",
            expiration=NOW + timedelta(days=7),
        )

    async def stop_watch(self, access_token, watch: WatchSubscription):
        self.stopped.append(watch.channel_id)


class FakeEngine:
    """Records sync calls made by the webhook ingress."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def sync(self, user_id, resource_type, force_full=False, notified_cursor=None):
        self.calls.append({
            "user_id": user_id,
            "resource_type": resource_type,
            "force_full": force_full,
            "notified_cursor": notified_cursor,
        })
        if self.error is not None:
            raise self.error
