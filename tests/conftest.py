"""
Test configuration and fixtures.

Provides:
- Environment for Settings (set before any mirrorsync import)
- In-memory Supabase, a scripted Calendar provider and a fake OAuth client
- A fully wired SyncServices built from those fakes
"""
import os
from datetime import timedelta

import pytest

os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.pop("REDIS_URL", None)
os.environ.pop("WEBHOOK_SECRET", None)

from mirrorsync.core.dependencies import SyncServices
from mirrorsync.models.domain import Credential, ResourceType, utcnow
from mirrorsync.services.sync.engine import IncrementalSyncEngine
from mirrorsync.services.sync.ingress import WebhookIngress
from mirrorsync.services.sync.store import MirrorStore
from mirrorsync.services.sync.watch import WatchSubscriptionManager
from mirrorsync.services.tokens.broker import TokenBroker

from tests.fakes import NOW, FakeCalendarProvider, FakeOAuthClient, FakeSupabase


# =============================================================================
# Building blocks
# =============================================================================

@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(supabase) -> MirrorStore:
    return MirrorStore(supabase)


@pytest.fixture
def oauth_client() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def token_broker(store, oauth_client) -> TokenBroker:
    return TokenBroker(store, oauth_client, margin_seconds=120)


@pytest.fixture
def calendar() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def engine(store, token_broker, calendar) -> IncrementalSyncEngine:
    return IncrementalSyncEngine(
        store,
        token_broker,
        {ResourceType.CALENDAR: calendar},
        resync_window_days=30,
        clock=lambda: NOW,
    )


@pytest.fixture
def watch_manager(store, token_broker, engine) -> WatchSubscriptionManager:
    return WatchSubscriptionManager(
        store,
        token_broker,
        engine,
        public_base_url="https://sync.example.com/",
        webhook_secret="s3cret",
        renewal_lead_hours=24,
        failure_threshold=2,
        clock=lambda: NOW,
    )


@pytest.fixture
def services(store, oauth_client, token_broker, engine, watch_manager) -> SyncServices:
    return SyncServices(
        store=store,
        oauth_client=oauth_client,
        token_broker=token_broker,
        engine=engine,
        watch_manager=watch_manager,
        ingress=WebhookIngress(store, engine),
    )


# =============================================================================
# Seed helpers
# =============================================================================

@pytest.fixture
def connect_user(store):
    """Store a credential that stays fresh for an hour."""
    def _connect(user_id: str = "user-1", access_token: str = "tok-1", refresh_token: str = "refresh-1"):
        return store.save_credential(
            Credential(
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=utcnow() + timedelta(hours=1),
                scopes=["https://www.googleapis.com/auth/calendar.readonly"],
            )
        )
    return _connect
