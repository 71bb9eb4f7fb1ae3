"""Test fixtures for the sync layer: in-memory SQLite cache and a fake remote."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from atrios_sync.config import SyncSettings
from atrios_sync.database import build_session_factory, create_tables
from atrios_sync.models import Base
from atrios_sync.store.cache_store import LocalCacheStore
from atrios_sync.sync.outbox import Outbox

from .fakes import FakeFeed, FakeRemote


@pytest.fixture(name="engine")
def fixture_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(name="session_factory")
def fixture_session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(name="store")
def fixture_store(session_factory):
    return LocalCacheStore(session_factory)


@pytest.fixture(name="outbox")
def fixture_outbox(session_factory):
    return Outbox(session_factory, max_attempts=3, backoff_seconds=0)


@pytest.fixture(name="remote")
def fixture_remote():
    return FakeRemote()


@pytest.fixture(name="feed")
def fixture_feed():
    return FakeFeed()


@pytest.fixture(name="test_settings")
def fixture_test_settings():
    return SyncSettings(
        _env_file=None,
        supabase_url="",
        supabase_key="",
        realtime_enabled=False,
        tenant_poll_seconds=0.05,
        chat_poll_seconds=0.05,
        admin_poll_seconds=0.05,
        push_max_attempts=3,
        push_retry_backoff_seconds=0,
        outbox_poll_seconds=0.05,
    )
