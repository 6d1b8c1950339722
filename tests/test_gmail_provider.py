"""
Gmail provider against a mocked Gmail API.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from mirrorsync.core.circuit_breakers import RetryPolicy
from mirrorsync.core.errors import CursorInvalidError, MalformedInputError
from mirrorsync.services.sync.providers import GmailProvider


def _message(message_id, subject="Hello", internal_date="1772445600000"):
    return {
        "id": message_id,
        "snippet": f"snippet of {message_id}",
        "internalDate": internal_date,
        "payload": {"headers": [{"name": "Subject", "value": subject}]},
    }


class GmailApi:
    """Routes requests by path; messages missing from self.messages answer 404."""

    def __init__(self):
        self.history = {"history": [], "historyId": "200"}
        self.history_status = 200
        self.messages = {}
        self.listing = {"messages": []}
        self.profile = {"emailAddress": "Someone@Example.com", "historyId": "180"}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/history"):
            return httpx.Response(self.history_status, json=self.history)
        if path.endswith("/profile"):
            return httpx.Response(200, json=self.profile)
        if path.endswith("/watch"):
            return httpx.Response(200, json={"historyId": "190", "expiration": "1773316800000"})
        if path.endswith("/stop"):
            return httpx.Response(204)
        if path.endswith("/messages"):
            return httpx.Response(200, json=self.listing)
        message_id = path.rsplit("/", 1)[-1]
        if message_id in self.messages:
            return httpx.Response(200, json=self.messages[message_id])
        return httpx.Response(404, json={"error": {"code": 404}})


async def _no_sleep(seconds):
    return None


def _provider(api, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return GmailProvider(client, RetryPolicy(sleep=_no_sleep), **kwargs)


@pytest.mark.asyncio
async def test_history_later_entries_win():
    api = GmailApi()
    api.history = {
        "history": [
            {"id": "101", "messagesAdded": [{"message": {"id": "m1"}}, {"message": {"id": "m2"}}]},
            {"id": "102", "messagesDeleted": [{"message": {"id": "m1"}}]},
        ],
        "historyId": "205",
    }
    api.messages["m2"] = _message("m2")

    page = await _provider(api).list_changes("tok", "100")

    assert api.requests[0].url.params["startHistoryId"] == "100"
    assert page.items == [{"id": "m1", "deleted": True}, _message("m2")]
    assert page.next_cursor == "205"


@pytest.mark.asyncio
async def test_history_follows_inbox_label_changes():
    api = GmailApi()
    api.history = {
        "history": [
            {"id": "101", "messagesAdded": [
                {"message": {"id": "m1", "labelIds": ["INBOX", "UNREAD"]}},
                {"message": {"id": "sent-1", "labelIds": ["SENT"]}},
            ]},
            {"id": "102", "labelsRemoved": [{"message": {"id": "m1"}, "labelIds": ["INBOX"]}]},
            {"id": "103", "labelsRemoved": [{"message": {"id": "m3"}, "labelIds": ["UNREAD"]}]},
            {"id": "104", "labelsAdded": [{"message": {"id": "m4"}, "labelIds": ["INBOX"]}]},
        ],
        "historyId": "210",
    }
    api.messages["m4"] = _message("m4", subject="Back in the inbox")

    page = await _provider(api).list_changes("tok", "100")

    params = api.requests[0].url.params
    assert "labelRemoved" in params.get_list("historyTypes")
    assert "labelId" not in params
    assert page.items == [{"id": "m1", "deleted": True}, _message("m4", subject="Back in the inbox")]


@pytest.mark.asyncio
async def test_history_cursor_only_on_last_page():
    api = GmailApi()
    api.history = {"history": [], "historyId": "205", "nextPageToken": "more"}

    page = await _provider(api).list_changes("tok", "100")

    assert page.next_page_token == "more"
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_expired_history_id_is_cursor_invalid():
    api = GmailApi()
    api.history_status = 404

    with pytest.raises(CursorInvalidError):
        await _provider(api).list_changes("tok", "1")


@pytest.mark.asyncio
async def test_message_gone_before_fetch_becomes_deletion():
    api = GmailApi()
    api.history = {"history": [{"messagesAdded": [{"message": {"id": "vanished"}}]}], "historyId": "201"}

    page = await _provider(api).list_changes("tok", "100")

    assert page.items == [{"id": "vanished", "deleted": True}]


@pytest.mark.asyncio
async def test_window_listing_uses_search_query():
    api = GmailApi()
    api.listing = {"messages": [{"id": "m1", "threadId": "t1"}]}
    api.messages["m1"] = _message("m1")
    provider = _provider(api)
    now = datetime(2026, 3, 2, tzinfo=timezone.utc)
    start, end = provider.window_for(now, 30)

    page = await provider.list_window("tok", start, end)

    query = api.requests[0].url.params["q"]
    assert query == f"after:{int(start.timestamp())} before:{int(now.timestamp())}"
    assert [item["id"] for item in page.items] == ["m1"]


@pytest.mark.asyncio
async def test_snapshot_cursor_reads_profile():
    assert await _provider(GmailApi()).snapshot_cursor("tok") == "180"


def test_cursor_is_newer():
    provider = GmailProvider(http_client=None)

    assert provider.cursor_is_newer("200", "150") is True
    assert provider.cursor_is_newer("150", "200") is False
    assert provider.cursor_is_newer("150", None) is True
    assert provider.cursor_is_newer(None, "150") is False
    assert provider.cursor_is_newer("abc", "150") is False


def test_parse_message():
    item = GmailProvider(http_client=None).parse_item(_message("m1", subject=""))

    assert item.title == "(No subject)"
    assert item.description == "snippet of m1"
    assert item.start_time == item.end_time
    assert item.start_time.timestamp() == 1772445600


def test_parse_message_with_bad_date():
    with pytest.raises(MalformedInputError):
        GmailProvider(http_client=None).parse_item({"id": "m1", "internalDate": "yesterday"})


@pytest.mark.asyncio
async def test_watch_requires_topic():
    with pytest.raises(MalformedInputError):
        await _provider(GmailApi()).start_watch("tok", "mailbox-u-0123abcd", "https://hook", None)


@pytest.mark.asyncio
async def test_start_watch_uses_mailbox_address_as_resource():
    api = GmailApi()

    channel = await _provider(api, topic_name="projects/p/topics/gmail").start_watch(
        "tok", "mailbox-u-0123abcd", "https://hook", None
    )

    watch_request = api.requests[-1]
    assert json.loads(watch_request.content) == {
        "topicName": "projects/p/topics/gmail",
        "labelIds": ["INBOX"],
        "labelFilterBehavior": "INCLUDE",
    }
    assert channel.resource_id == "someone@example.com"
    assert channel.expiration is not None
