"""Hydration Merger - login-time pull of one tenant's remote data.

Each step is independent: a failed fetch is logged, listed in the result and
leaves that kind's cache as it was. Other tenants' cached entities are never
touched. Remote rows go through the Entity Merge Policy, and entities with a
push still in flight or queued keep their local body.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..remote.filters import eq
from ..schemas.sync import HydrationResult
from ..store.kinds import EntityKind
from .merge import EntityMergePolicy, MergeOutcome
from .subscriber import PendingCheck

if TYPE_CHECKING:
    from ..remote.client import RemoteMirrorClient
    from ..store.cache_store import LocalCacheStore

logger = logging.getLogger(__name__)

# Kinds replaced wholesale per tenant, in hydration order.
PARTITIONED_KINDS = (EntityKind.RECORDS, EntityKind.MESSAGES)


class HydrationMerger:
    def __init__(
        self,
        store: "LocalCacheStore",
        remote: "RemoteMirrorClient",
        policy: EntityMergePolicy | None = None,
        is_pending: PendingCheck | None = None,
    ):
        self.store = store
        self.remote = remote
        self.policy = policy or EntityMergePolicy()
        self.is_pending = is_pending

    async def hydrate(self, tenant_id: str) -> HydrationResult:
        """Pull the tenant's Account, Records and Messages into the cache."""
        result = HydrationResult(tenant_id=tenant_id)

        try:
            result.account = await self._hydrate_account(tenant_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Hydration of account %s failed: %s", tenant_id, exc)
            result.errors.append(f"{EntityKind.ACCOUNTS.value}: {exc}")

        for kind in PARTITIONED_KINDS:
            try:
                written, kept = await self._hydrate_partition(kind, tenant_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Hydration of %s for %s failed: %s", kind.value, tenant_id, exc)
                result.errors.append(f"{kind.value}: {exc}")
                continue
            setattr(result, kind.value, written)
            result.kept_pending += kept

        logger.info(
            "Hydrated tenant %s: account=%s records=%d messages=%d errors=%d",
            tenant_id, result.account, result.records, result.messages, len(result.errors),
        )
        return result

    async def _hydrate_account(self, tenant_id: str) -> bool:
        rows = await self.remote.select_where(EntityKind.ACCOUNTS, eq("id", tenant_id))
        if not rows:
            return False
        if self._pending(EntityKind.ACCOUNTS, tenant_id):
            return False
        self.policy.apply(self.store, EntityKind.ACCOUNTS, rows[0])
        return True

    async def _hydrate_partition(self, kind: EntityKind, tenant_id: str) -> tuple[int, int]:
        field = kind.tenant_field
        rows = await self.remote.select_where(kind, eq(field, tenant_id))
        cached = {e["id"]: e for e in self.store.read(kind) if e.get(field) == tenant_id}

        fresh: dict[str, dict[str, Any]] = {}
        kept = 0
        for row in rows:
            entity_id = row.get("id")
            if not isinstance(entity_id, str) or not entity_id:
                continue
            current = cached.get(entity_id)
            if self._pending(kind, entity_id):
                # Unsent local write (or delete): the remote body loses.
                if current is not None:
                    fresh[entity_id] = current
                    kept += 1
                continue
            merged, outcome = self.policy.merge(current, row)
            if outcome is MergeOutcome.STALE:
                logger.debug("Kept newer cached %s/%s over remote snapshot", kind.value, entity_id)
            fresh[entity_id] = merged if merged is not None else current

        for entity_id, entity in cached.items():
            if entity_id not in fresh and self._pending(kind, entity_id):
                fresh[entity_id] = entity
                kept += 1

        self.store.replace_partition(kind, lambda e: e.get(field) == tenant_id, fresh.values())
        return len(fresh), kept

    def _pending(self, kind: EntityKind, entity_id: str) -> bool:
        return self.is_pending is not None and self.is_pending(kind, entity_id)
