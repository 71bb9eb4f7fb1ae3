"""Remote Mirror Client - thin async wrapper over the hosted PostgREST API.

Every table is addressed by the entity kind; writes are upserts keyed by
``id`` and reads are equality-filtered selects. HTTP failures surface as
``httpx.HTTPError`` subclasses; callers decide whether to swallow them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import SyncSettings, settings as default_settings
from ..store.kinds import EntityKind
from .filters import ALL, Predicate

logger = logging.getLogger(__name__)


@dataclass
class RemoteConfig:
    """Hosted store configuration."""

    url: str
    api_key: str
    schema: str = "public"
    timeout: float | None = 30.0
    page_size: int = 1000

    @classmethod
    def from_settings(cls, settings: SyncSettings | None = None) -> "RemoteConfig":
        settings = settings or default_settings
        if not settings.remote_configured:
            raise ValueError("Remote store not configured. Set ATRIOS_SUPABASE_URL and ATRIOS_SUPABASE_KEY.")
        return cls(
            url=settings.rest_url,
            api_key=settings.supabase_key,
            schema=settings.remote_schema,
            timeout=settings.remote_timeout_seconds,
            page_size=settings.remote_page_size,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "api_key": self.api_key[:12] + "..." if self.api_key else None,
            "schema": self.schema,
            "timeout": self.timeout,
            "page_size": self.page_size,
        }


class RemoteMirrorClient:
    """Upsert/select/update/delete against the six mirrored tables.

    Usage:
        async with RemoteMirrorClient(RemoteConfig.from_settings()) as remote:
            await remote.upsert(EntityKind.RECORDS, record)
            rows = await remote.select_where(EntityKind.RECORDS, eq("companyId", tenant_id))
    """

    def __init__(self, config: RemoteConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RemoteMirrorClient":
        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            timeout=httpx.Timeout(self.config.timeout),
            transport=self._transport,
            headers={
                "apikey": self.config.api_key,
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Accept-Profile": self.config.schema,
                "Content-Profile": self.config.schema,
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def http(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        resp = await self.http.request(method, f"/{table}", params=params, json=json, headers=headers)
        resp.raise_for_status()
        return resp

    # Operations

    async def upsert(self, kind: EntityKind, entity: dict[str, Any]) -> None:
        """Insert-or-replace by id. Repeating the call leaves the same row."""
        kind = EntityKind.parse(kind)
        await self._request(
            "POST",
            kind.remote_table,
            params=[("on_conflict", "id")],
            json=entity,
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.debug("Upserted %s/%s", kind.remote_table, entity.get("id"))

    async def select_where(
        self,
        kind: EntityKind,
        predicate: Predicate | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every row matching ``predicate`` (all rows when omitted)."""
        kind = EntityKind.parse(kind)
        predicate = predicate or ALL
        page_size = max(1, self.config.page_size)
        rows: list[dict[str, Any]] = []
        offset = 0

        while True:
            params = [("select", "*"), *predicate.to_params(), ("order", "id.asc"),
                      ("limit", str(page_size)), ("offset", str(offset))]
            resp = await self._request("GET", kind.remote_table, params=params)
            batch = resp.json()
            if not isinstance(batch, list) or not batch:
                break
            rows.extend(item for item in batch if isinstance(item, dict))
            if len(batch) < page_size:
                break
            offset += len(batch)

        return rows

    async def update_where(
        self,
        kind: EntityKind,
        patch: dict[str, Any],
        predicate: Predicate,
    ) -> None:
        if not predicate:
            raise ValueError("update_where requires a non-empty predicate")
        kind = EntityKind.parse(kind)
        await self._request(
            "PATCH",
            kind.remote_table,
            params=predicate.to_params(),
            json=patch,
            prefer="return=minimal",
        )

    async def delete_where(self, kind: EntityKind, predicate: Predicate) -> None:
        if not predicate:
            raise ValueError("delete_where requires a non-empty predicate")
        kind = EntityKind.parse(kind)
        await self._request(
            "DELETE",
            kind.remote_table,
            params=predicate.to_params(),
            prefer="return=minimal",
        )
