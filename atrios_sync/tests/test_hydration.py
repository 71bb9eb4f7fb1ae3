"""Tests for login-time hydration."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from atrios_sync.database import build_session_factory, create_tables
from atrios_sync.store.cache_store import LocalCacheStore
from atrios_sync.store.kinds import EntityKind
from atrios_sync.sync.hydration import HydrationMerger
from atrios_sync.sync.merge import EntityMergePolicy
from atrios_sync.sync.push_writer import PushWriter

from .fakes import FakeRemote


def _records(store, tenant):
    return sorted(r["id"] for r in store.read(EntityKind.RECORDS) if r["companyId"] == tenant)


def _device() -> LocalCacheStore:
    """A separate on-device cache."""
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_tables(engine)
    return LocalCacheStore(build_session_factory(engine))


@pytest.mark.asyncio
async def test_hydrate_replaces_only_the_tenants_partition(store, remote):
    store.write(EntityKind.RECORDS, {"id": "B1", "companyId": "B", "totalAmount": 7})
    store.write(EntityKind.RECORDS, {"id": "A-stale", "companyId": "A"})
    store.write(EntityKind.MESSAGES, {"id": "MB", "companyId": "B"})
    remote.seed(EntityKind.ACCOUNTS, {"id": "A", "name": "Acme"})
    remote.seed(EntityKind.RECORDS, {"id": "A1", "companyId": "A"}, {"id": "A2", "companyId": "A"},
                {"id": "B-remote", "companyId": "B"})
    remote.seed(EntityKind.MESSAGES, {"id": "MA", "companyId": "A", "content": "hi"})

    result = await HydrationMerger(store, remote).hydrate("A")

    assert result.complete
    assert result.account is True
    assert result.records == 2
    assert result.messages == 1
    assert _records(store, "A") == ["A1", "A2"]
    assert store.read_one(EntityKind.RECORDS, "B1") == {"id": "B1", "companyId": "B", "totalAmount": 7}
    assert store.read_one(EntityKind.RECORDS, "B-remote") is None
    assert {m["id"] for m in store.read(EntityKind.MESSAGES)} == {"MB", "MA"}
    assert store.read_one(EntityKind.ACCOUNTS, "A") == {"id": "A", "name": "Acme"}


@pytest.mark.asyncio
async def test_hydrate_replaces_cached_account(store, remote):
    store.write(EntityKind.ACCOUNTS, {"id": "A", "plan": "free"})
    store.write(EntityKind.ACCOUNTS, {"id": "B", "plan": "free"})
    remote.seed(EntityKind.ACCOUNTS, {"id": "A", "plan": "premium_annual"})

    await HydrationMerger(store, remote).hydrate("A")
    assert store.read(EntityKind.ACCOUNTS) == [
        {"id": "A", "plan": "premium_annual"},
        {"id": "B", "plan": "free"},
    ]


@pytest.mark.asyncio
async def test_missing_remote_account_changes_nothing(store, remote):
    store.write(EntityKind.ACCOUNTS, {"id": "A", "plan": "free"})
    result = await HydrationMerger(store, remote).hydrate("A")
    assert result.account is False
    assert store.read(EntityKind.ACCOUNTS) == [{"id": "A", "plan": "free"}]


@pytest.mark.asyncio
async def test_failed_fetch_leaves_that_kind_untouched(store, remote):
    store.write(EntityKind.MESSAGES, {"id": "M-old", "companyId": "A"})
    remote.seed(EntityKind.RECORDS, {"id": "A1", "companyId": "A"})
    remote.failing.add(EntityKind.MESSAGES)

    result = await HydrationMerger(store, remote).hydrate("A")

    assert not result.complete
    assert len(result.errors) == 1
    assert result.errors[0].startswith("messages")
    assert _records(store, "A") == ["A1"]
    assert store.read(EntityKind.MESSAGES) == [{"id": "M-old", "companyId": "A"}]


@pytest.mark.asyncio
async def test_offline_hydration_never_raises(store, remote):
    store.write(EntityKind.RECORDS, {"id": "A1", "companyId": "A"})
    remote.offline = True
    result = await HydrationMerger(store, remote).hydrate("A")
    assert len(result.errors) == 3
    assert _records(store, "A") == ["A1"]


@pytest.mark.asyncio
async def test_concurrent_devices_both_visible_on_a_third():
    """Two devices create different Records; a third device sees both."""
    remote = FakeRemote()
    first, second, third = _device(), _device(), _device()
    writer = PushWriter(remote)
    for device, record_id in ((first, "R-one"), (second, "R-two")):
        saved = device.write(EntityKind.RECORDS, {"id": record_id, "companyId": "A"})
        writer.push(EntityKind.RECORDS, saved)
    await writer.flush()

    await HydrationMerger(third, remote).hydrate("A")
    assert _records(third, "A") == ["R-one", "R-two"]


@pytest.mark.asyncio
async def test_pending_local_writes_survive_hydration(store, remote, outbox):
    writer = PushWriter(remote, outbox)
    remote.seed(EntityKind.RECORDS, {"id": "A1", "companyId": "A", "v": "remote"},
                {"id": "A-deleted", "companyId": "A"})

    remote.offline = True
    local = store.write(EntityKind.RECORDS, {"id": "A1", "companyId": "A", "v": "local"})
    await writer.push(EntityKind.RECORDS, local)
    new = store.write(EntityKind.RECORDS, {"id": "A-new", "companyId": "A"})
    await writer.push(EntityKind.RECORDS, new)
    store.delete(EntityKind.RECORDS, "A-deleted")
    await writer.push_delete(EntityKind.RECORDS, "A-deleted")
    remote.offline = False

    result = await HydrationMerger(store, remote, is_pending=writer.is_pending).hydrate("A")

    assert result.kept_pending == 2
    assert _records(store, "A") == ["A-new", "A1"]
    assert store.read_one(EntityKind.RECORDS, "A1")["v"] == "local"


@pytest.mark.asyncio
async def test_pending_account_is_not_overwritten(store, remote, outbox):
    writer = PushWriter(remote, outbox)
    remote.seed(EntityKind.ACCOUNTS, {"id": "A", "name": "remote"})
    remote.offline = True
    await writer.push(EntityKind.ACCOUNTS, store.write(EntityKind.ACCOUNTS, {"id": "A", "name": "local"}))
    remote.offline = False

    result = await HydrationMerger(store, remote, is_pending=writer.is_pending).hydrate("A")
    assert result.account is False
    assert store.read_one(EntityKind.ACCOUNTS, "A")["name"] == "local"


@pytest.mark.asyncio
async def test_pending_writes_of_other_tenants_are_not_pulled_in(store, remote, outbox):
    writer = PushWriter(remote, outbox)
    remote.offline = True
    await writer.push(EntityKind.RECORDS, store.write(EntityKind.RECORDS, {"id": "B1", "companyId": "B"}))
    remote.offline = False

    result = await HydrationMerger(store, remote, is_pending=writer.is_pending).hydrate("A")
    assert result.kept_pending == 0
    assert _records(store, "B") == ["B1"]
    assert _records(store, "A") == []


@pytest.mark.asyncio
async def test_versioned_hydration_keeps_newer_cached_record(store, remote):
    store.write(EntityKind.RECORDS, {"id": "R1", "companyId": "A", "syncVersion": 5, "total": 200})
    store.write(EntityKind.RECORDS, {"id": "R2", "companyId": "A", "syncVersion": 1, "total": 10})
    remote.seed(
        EntityKind.RECORDS,
        {"id": "R1", "companyId": "A", "syncVersion": 3, "total": 100},
        {"id": "R2", "companyId": "A", "syncVersion": 2, "total": 20},
    )

    result = await HydrationMerger(store, remote, EntityMergePolicy("versioned")).hydrate("A")

    assert result.records == 2
    assert store.read_one(EntityKind.RECORDS, "R1")["total"] == 200
    assert store.read_one(EntityKind.RECORDS, "R1")["syncVersion"] == 5
    assert store.read_one(EntityKind.RECORDS, "R2")["total"] == 20


@pytest.mark.asyncio
async def test_in_flight_push_is_kept_during_hydration(store, remote):
    remote.seed(EntityKind.RECORDS, {"id": "A1", "companyId": "A", "v": "remote"})
    original_upsert = remote.upsert
    release = asyncio.Event()

    async def slow_upsert(kind, entity):
        await release.wait()
        await original_upsert(kind, entity)

    remote.upsert = slow_upsert
    writer = PushWriter(remote)
    writer.push(EntityKind.RECORDS, store.write(EntityKind.RECORDS, {"id": "A1", "companyId": "A", "v": "local"}))

    result = await HydrationMerger(store, remote, is_pending=writer.is_pending).hydrate("A")
    assert result.kept_pending == 1
    assert store.read_one(EntityKind.RECORDS, "A1")["v"] == "local"

    release.set()
    await writer.flush()
    assert remote.rows(EntityKind.RECORDS) == [{"id": "A1", "companyId": "A", "v": "local"}]
