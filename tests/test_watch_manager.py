"""
Watch subscription manager: open, renew, stop, the renewal sweep, status.
"""
from datetime import timedelta

import pytest

from mirrorsync.core.errors import TransientError
from mirrorsync.models.domain import GOOGLE, Credential, RemoteItem, ResourceType, WatchSubscription, utcnow
from mirrorsync.services.sync.channels import parse_channel_id

from tests.fakes import NOW, Script, event

CAL = ResourceType.CALENDAR


def _existing(store, user_id="user-1", cursor="c9", expiration=None, channel_id=None):
    watch = WatchSubscription(
        user_id=user_id,
        resource_type=CAL,
        channel_id=channel_id or f"calendar-{user_id}-aaaaaaaa",
        resource_id="old-resource",
        expiration=expiration or NOW + timedelta(hours=2),
        cursor=cursor,
    )
    store.save_watch(watch)
    return watch


def _expired_credential(store, user_id="user-1"):
    store.save_credential(
        Credential(
            user_id=user_id,
            access_token="old-token",
            refresh_token="refresh-1",
            expires_at=utcnow() - timedelta(minutes=1),
        )
    )


@pytest.mark.asyncio
async def test_first_subscription_seeds_mirror(watch_manager, store, calendar, connect_user):
    connect_user()
    calendar.window = Script(pages=[[event("e1", NOW + timedelta(days=1))]], next_cursor="seed")

    watch = await watch_manager.create_or_renew("user-1", CAL)

    assert parse_channel_id(watch.channel_id) == (CAL, "user-1")
    channel_id, address, token = calendar.started[0]
    assert address == "https://sync.example.com/webhooks/google/calendar"
    assert token == "s3cret"
    assert watch.cursor == "seed"
    assert store.get_watch("user-1", CAL).cursor == "seed"
    assert store.get_record("user-1", CAL, "e1") is not None


@pytest.mark.asyncio
async def test_renewal_keeps_cursor_and_stops_old_channel(watch_manager, store, calendar, connect_user):
    connect_user()
    old = _existing(store)

    watch = await watch_manager.create_or_renew("user-1", CAL)

    assert watch.channel_id != old.channel_id
    assert store.get_watch("user-1", CAL).cursor == "c9"
    assert store.get_watch("user-1", CAL).channel_id == watch.channel_id
    assert calendar.stopped == [old.channel_id]
    # No resync on renewal
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_renewal_does_not_roll_back_advanced_cursor(watch_manager, store, calendar, connect_user):
    connect_user()
    _existing(store, cursor="c9")
    # A webhook sync lands while the new channel is being opened
    calendar.on_start_watch = lambda user_id: store.update_cursor(user_id, CAL, "c10")

    watch = await watch_manager.create_or_renew("user-1", CAL)

    assert watch.cursor == "c10"
    assert store.get_watch("user-1", CAL).cursor == "c10"


@pytest.mark.asyncio
async def test_failed_initial_sync_still_saves_subscription(watch_manager, store, calendar, connect_user):
    connect_user()
    calendar.window = Script(pages=[[]], fail_at_page=0, error=TransientError("HTTP 503"))

    watch = await watch_manager.create_or_renew("user-1", CAL)

    assert watch.cursor is None
    assert store.get_watch("user-1", CAL) is not None


@pytest.mark.asyncio
async def test_renewal_sweep(watch_manager, store, calendar, connect_user):
    connect_user("ok-user")
    connect_user("flaky-user")
    _existing(store, "ok-user")
    _existing(store, "flaky-user")
    _existing(store, "gone-user")  # no credential
    store.upsert_record("gone-user", CAL, RemoteItem(external_id="e1", start_time=NOW, end_time=NOW))
    _existing(store, "later-user", expiration=NOW + timedelta(days=5))
    calendar.watch_failures["flaky-user"] = TransientError("calendar events.watch: HTTP 503")

    summary = await watch_manager.renew_expiring()

    assert summary.due == 3
    assert summary.renewed == 1
    assert summary.failed == 1
    assert summary.removed == 1
    assert summary.flagged == 0
    assert store.get_watch("gone-user", CAL) is None
    assert store.get_record("gone-user", CAL, "e1") is None
    assert store.get_watch("flaky-user", CAL).consecutive_failures == 1
    assert store.get_watch("ok-user", CAL).expiration == NOW + timedelta(days=7)
    assert store.get_watch("later-user", CAL).channel_id == "calendar-later-user-aaaaaaaa"


@pytest.mark.asyncio
async def test_repeated_failures_flag_subscription(watch_manager, store, calendar, connect_user):
    connect_user("flaky-user")
    _existing(store, "flaky-user")
    calendar.watch_failures["flaky-user"] = TransientError("calendar events.watch: HTTP 503")

    await watch_manager.renew_expiring()
    summary = await watch_manager.renew_expiring()

    assert summary.flagged == 1
    assert store.get_watch("flaky-user", CAL).needs_reauth is True
    assert watch_manager.status("flaky-user", CAL).state == "flagged"

    # Flagged rows are left out of later sweeps
    summary = await watch_manager.renew_expiring()
    assert summary.due == 0


@pytest.mark.asyncio
async def test_stop_drops_subscription_and_rows(watch_manager, store, supabase, calendar, connect_user):
    connect_user()
    old = _existing(store)
    store.upsert_record("user-1", CAL, RemoteItem(external_id="e1", start_time=NOW, end_time=NOW))
    store.mark_notification_processed("user-1", "41", CAL)

    await watch_manager.stop("user-1", CAL)

    assert calendar.stopped == [old.channel_id]
    assert store.get_watch("user-1", CAL) is None
    assert store.get_record("user-1", CAL, "e1") is None
    assert supabase.rows("processed_notifications") == []


@pytest.mark.asyncio
async def test_stop_without_credential_still_cleans_up(watch_manager, store, calendar):
    _existing(store)

    await watch_manager.stop("user-1", CAL)

    assert calendar.stopped == []
    assert store.get_watch("user-1", CAL) is None


@pytest.mark.asyncio
async def test_stop_cleans_up_when_token_refresh_fails(watch_manager, store, calendar, oauth_client):
    _expired_credential(store)
    _existing(store)
    store.upsert_record("user-1", CAL, RemoteItem(external_id="e1", start_time=NOW, end_time=NOW))
    oauth_client.refresh_error = TransientError("token endpoint HTTP 503")

    await watch_manager.stop("user-1", CAL)

    assert calendar.stopped == []
    assert store.get_watch("user-1", CAL) is None
    assert store.get_record("user-1", CAL, "e1") is None


@pytest.mark.asyncio
async def test_disconnect_revokes_grant(watch_manager, store, oauth_client, connect_user):
    connect_user()
    _existing(store)

    await watch_manager.disconnect("user-1")

    assert oauth_client.revoked == ["refresh-1"]
    assert store.get_credential("user-1", GOOGLE) is None
    assert store.list_watches_for_user("user-1") == []


@pytest.mark.asyncio
async def test_disconnect_revokes_even_when_token_refresh_fails(watch_manager, store, supabase, oauth_client):
    _expired_credential(store)
    _existing(store)
    store.mark_notification_processed("user-1", "pubsub-7", ResourceType.MAILBOX)
    oauth_client.refresh_error = TransientError("token endpoint HTTP 503")

    await watch_manager.disconnect("user-1")

    assert store.get_credential("user-1", GOOGLE) is None
    assert store.list_watches_for_user("user-1") == []
    assert supabase.rows("processed_notifications") == []


@pytest.mark.asyncio
async def test_sweep_prunes_old_ledger_rows(watch_manager, store, supabase):
    store.mark_notification_processed("user-1", "old", CAL)
    store.mark_notification_processed("user-1", "recent", CAL)
    ages = {"old": timedelta(days=8), "recent": timedelta(days=1)}
    for row in supabase.rows("processed_notifications"):
        row["processed_at"] = (NOW - ages[row["message_id"]]).isoformat()

    summary = await watch_manager.renew_expiring()

    assert summary.pruned_notifications == 1
    assert [r["message_id"] for r in supabase.rows("processed_notifications")] == ["recent"]


def test_status(watch_manager, store):
    assert watch_manager.status("user-1", CAL).state == "none"

    _existing(store, expiration=NOW - timedelta(minutes=1))
    assert watch_manager.status("user-1", CAL).state == "expired"

    _existing(store, expiration=NOW + timedelta(days=1))
    status = watch_manager.status("user-1", CAL)
    assert status.state == "active"
    assert status.active is True
    assert status.has_cursor is True
