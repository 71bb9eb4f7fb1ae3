"""Tests for the SyncService facade."""

from __future__ import annotations

import pytest

from atrios_sync.service import ADMIN_KINDS, SyncService
from atrios_sync.store.kinds import EntityKind

from .fakes import wait_for_condition


@pytest.fixture(name="service")
def fixture_service(test_settings, session_factory, remote, feed):
    return SyncService(test_settings, session_factory=session_factory, remote=remote, feed=feed)


@pytest.mark.asyncio
async def test_hydrate_through_service(service, remote):
    remote.seed(EntityKind.ACCOUNTS, {"id": "A", "name": "Acme"})
    remote.seed(EntityKind.RECORDS, {"id": "R1", "companyId": "A"})
    async with service:
        result = await service.hydrate("A")
    assert result.complete
    assert service.repos.records.list("A") == [{"id": "R1", "companyId": "A"}]


@pytest.mark.asyncio
async def test_offline_save_reaches_remote_through_relay(service, remote):
    async with service:
        remote.offline = True
        service.repos.records.save({"id": "R1", "companyId": "A"})
        assert await wait_for_condition(lambda: service.outbox.has_pending(EntityKind.RECORDS, "R1"))

        remote.offline = False
        assert await wait_for_condition(lambda: remote.rows(EntityKind.RECORDS) != [])
    assert service.outbox.list_items() == []


@pytest.mark.asyncio
async def test_tenant_watch_preset(service, remote, feed):
    remote.seed(EntityKind.ACCOUNTS, {"id": "A", "canEditSensitiveData": True})
    changes = []
    async with service:
        watch = service.watch_tenant("A", listener=changes.append)
        assert watch.poll_interval == service.settings.tenant_poll_seconds
        assert [t.kind for t in watch.targets] == [EntityKind.ACCOUNTS, EntityKind.MESSAGES]
        async with watch:
            assert await wait_for_condition(lambda: changes != [])
    assert changes[0].flag_raised("canEditSensitiveData")
    assert all(sub.closed for sub in feed.subscriptions)


def test_chat_and_admin_presets(service):
    chat = service.watch_chat("A")
    assert [t.describe() for t in chat.targets] == ["messages[companyId=eq.A]"]
    assert chat.poll_interval == service.settings.chat_poll_seconds

    admin = service.watch_admin()
    assert [t.kind for t in admin.targets] == list(ADMIN_KINDS)
    assert all(not t.predicate for t in admin.targets)


@pytest.mark.asyncio
async def test_close_stops_open_watches(service):
    await service.start()
    watch = service.watch_admin()
    await watch.start()
    assert watch.running

    await service.close()
    assert not watch.running


@pytest.mark.asyncio
async def test_relay_not_started_in_single_attempt_mode(test_settings, session_factory, remote):
    test_settings.push_max_attempts = 1
    service = SyncService(test_settings, session_factory=session_factory, remote=remote)
    async with service:
        assert service.relay._task is None
        remote.offline = True
        service.repos.records.save({"id": "R1", "companyId": "A"})
        await service.push_writer.flush()
    assert service.outbox.list_items() == []


def test_unconfigured_remote_rejected(test_settings, session_factory):
    with pytest.raises(ValueError):
        SyncService(test_settings, session_factory=session_factory)


def test_local_state_helpers(service):
    assert service.pdf_downloads.increment("A") == 1
    assert service.session_state.save("A", view="dashboard")["companyId"] == "A"


@pytest.mark.asyncio
async def test_closed_watch_is_no_longer_tracked(service):
    async with service:
        for _ in range(3):
            async with service.watch_chat("A"):
                assert len(service._watches) == 1
        assert service._watches == []

        kept = service.watch_admin()
        assert service._watches == [kept]
