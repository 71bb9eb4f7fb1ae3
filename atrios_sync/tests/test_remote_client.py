"""Tests for the PostgREST mirror client (httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from atrios_sync.config import SyncSettings
from atrios_sync.remote.client import RemoteConfig, RemoteMirrorClient
from atrios_sync.remote.filters import ALL, eq, neq
from atrios_sync.store.kinds import EntityKind


def _config(**overrides) -> RemoteConfig:
    values = {"url": "https://proj.supabase.co/rest/v1", "api_key": "anon-key", "page_size": 2}
    values.update(overrides)
    return RemoteConfig(**values)


@pytest.mark.asyncio
async def test_upsert_posts_merge_duplicates():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(handler)) as remote:
        await remote.upsert(EntityKind.ACCOUNTS, {"id": "A", "name": "Acme"})

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/companies"
    assert request.url.params["on_conflict"] == "id"
    assert request.headers["Prefer"] == "resolution=merge-duplicates,return=minimal"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert json.loads(request.content) == {"id": "A", "name": "Acme"}


@pytest.mark.asyncio
async def test_select_where_filters_and_paginates():
    pages = [[{"id": "R1"}, {"id": "R2"}], [{"id": "R3"}]]
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=pages[len(seen) - 1])

    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(handler)) as remote:
        rows = await remote.select_where(EntityKind.RECORDS, eq("companyId", "A"))

    assert [r["id"] for r in rows] == ["R1", "R2", "R3"]
    assert len(seen) == 2
    assert seen[0].url.path == "/rest/v1/budgets"
    assert seen[0].url.params["companyId"] == "eq.A"
    assert seen[0].url.params["offset"] == "0"
    assert seen[1].url.params["offset"] == "2"
    assert seen[0].url.params["limit"] == "2"


@pytest.mark.asyncio
async def test_select_where_without_predicate_reads_whole_table():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "id" not in request.url.params
        return httpx.Response(200, json=[{"id": "C1"}])

    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(handler)) as remote:
        assert await remote.select_where(EntityKind.COUPONS, ALL) == [{"id": "C1"}]


@pytest.mark.asyncio
async def test_http_errors_propagate():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"message": "down"}))
    async with RemoteMirrorClient(_config(), transport=transport) as remote:
        with pytest.raises(httpx.HTTPStatusError):
            await remote.upsert(EntityKind.RECORDS, {"id": "R1"})


@pytest.mark.asyncio
async def test_update_where_sends_patch_with_filters():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(handler)) as remote:
        await remote.update_where(
            EntityKind.MESSAGES,
            {"read": True},
            eq("companyId", "A") & neq("senderRole", "user"),
        )

    request = seen[0]
    assert request.method == "PATCH"
    assert request.url.params["companyId"] == "eq.A"
    assert request.url.params["senderRole"] == "neq.user"
    assert json.loads(request.content) == {"read": True}


@pytest.mark.asyncio
async def test_delete_where_by_id():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(handler)) as remote:
        await remote.delete_where(EntityKind.COUPONS, eq("id", "C1"))
    assert seen[0].method == "DELETE"
    assert seen[0].url.params["id"] == "eq.C1"


@pytest.mark.asyncio
async def test_bulk_writes_require_a_filter():
    async with RemoteMirrorClient(_config(), transport=httpx.MockTransport(lambda r: httpx.Response(204))) as remote:
        with pytest.raises(ValueError):
            await remote.update_where(EntityKind.MESSAGES, {"read": True}, ALL)
        with pytest.raises(ValueError):
            await remote.delete_where(EntityKind.RECORDS, ALL)


@pytest.mark.asyncio
async def test_client_requires_context():
    remote = RemoteMirrorClient(_config())
    with pytest.raises(RuntimeError):
        await remote.upsert(EntityKind.RECORDS, {"id": "R1"})


def test_config_from_settings():
    configured = SyncSettings(_env_file=None, supabase_url="https://proj.supabase.co/", supabase_key="k",
                              remote_timeout_seconds=None)
    config = RemoteConfig.from_settings(configured)
    assert config.url == "https://proj.supabase.co/rest/v1"
    assert config.timeout is None
    assert config.to_dict()["api_key"].endswith("...")

    with pytest.raises(ValueError):
        RemoteConfig.from_settings(SyncSettings(_env_file=None, supabase_url="", supabase_key=""))


def test_realtime_url_from_settings():
    configured = SyncSettings(_env_file=None, supabase_url="https://proj.supabase.co", supabase_key="k")
    assert configured.realtime_url == "wss://proj.supabase.co/realtime/v1/websocket?apikey=k&vsn=1.0.0"
