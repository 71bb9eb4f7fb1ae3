"""Per-kind repositories injected into collaborators.

Each repository writes through the Local Cache Store first (synchronous,
authoritative) and then hands the committed body to the Push Writer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from ..remote.filters import eq, neq
from ..schemas.entities import as_body
from ..sync.merge import EntityMergePolicy
from .cache_store import Entity, LocalCacheStore
from .kinds import EntityKind

if TYPE_CHECKING:
    from ..remote.client import RemoteMirrorClient
    from ..sync.push_writer import PushWriter

logger = logging.getLogger(__name__)


class EntityRepository:
    """Read/write access to one entity kind."""

    def __init__(
        self,
        store: LocalCacheStore,
        kind: EntityKind,
        push_writer: "PushWriter | None" = None,
        policy: EntityMergePolicy | None = None,
    ):
        self.store = store
        self.kind = EntityKind.parse(kind)
        self.push_writer = push_writer
        self.policy = policy or EntityMergePolicy()

    def list(self, tenant_id: str | None = None) -> list[Entity]:
        entities = self.store.read(self.kind)
        if tenant_id is None or self.kind.tenant_field is None:
            return entities
        return [e for e in entities if self.kind.tenant_of(e) == tenant_id]

    def get(self, entity_id: str) -> Entity | None:
        return self.store.read_one(self.kind, entity_id)

    def save(self, entity: BaseModel | dict[str, Any]) -> Entity:
        """Commit locally, then mirror to the remote in the background."""
        body = as_body(entity)
        current = self.store.read_one(self.kind, body.get("id")) if body.get("id") else None
        saved = self.store.write(self.kind, self.policy.stamp(current, body))
        if self.push_writer is not None:
            self.push_writer.push(self.kind, saved, base=current)
        return saved

    async def delete(self, entity_id: str) -> bool:
        """Remove from the cache and from the remote."""
        removed = self.store.delete(self.kind, entity_id)
        if self.push_writer is not None:
            task = self.push_writer.push_delete(self.kind, entity_id)
            if task is not None:
                await task
        return removed


class AccountRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None):
        super().__init__(store, EntityKind.ACCOUNTS, push_writer, policy)

    def find_by_email(self, email: str) -> Entity | None:
        needle = email.strip().lower()
        for account in self.list():
            if str(account.get("email", "")).strip().lower() == needle:
                return account
        return None

    async def remove(self, account_id: str) -> bool:
        """Delete an account together with its cached Records."""
        self.store.delete_where(EntityKind.RECORDS, lambda r: r.get("companyId") == account_id)
        return await self.delete(account_id)


class RecordRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None):
        super().__init__(store, EntityKind.RECORDS, push_writer, policy)


class MessageRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None, remote: "RemoteMirrorClient | None" = None):
        super().__init__(store, EntityKind.MESSAGES, push_writer, policy)
        self.remote = remote

    def unread(self, tenant_id: str | None = None, *, from_role: str | None = None) -> list[Entity]:
        return [
            m for m in self.list(tenant_id)
            if not m.get("read") and (from_role is None or m.get("senderRole") == from_role)
        ]

    async def mark_read(self, tenant_id: str, reader_role: str) -> int:
        """Flag the other side's messages in a conversation as read.

        The cache is patched first; the remote gets one bulk update whose
        failure is logged and otherwise ignored.
        """
        changed = 0
        for message in self.list(tenant_id):
            if message.get("senderRole") == reader_role or message.get("read"):
                continue
            patch = self.policy.stamp(message, {"id": message["id"], "read": True})
            outcome, _ = self.policy.apply(self.store, self.kind, patch, partial=True)
            if outcome.changed:
                changed += 1

        if self.remote is not None:
            try:
                await self.remote.update_where(
                    self.kind,
                    {"read": True},
                    eq("companyId", tenant_id) & neq("senderRole", reader_role),
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Remote mark-read for %s failed: %s", tenant_id, exc)
        return changed


class TransactionRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None):
        super().__init__(store, EntityKind.TRANSACTIONS, push_writer, policy)

    def recent(self, tenant_id: str | None = None) -> list[Entity]:
        """Newest first (ISO dates sort lexicographically)."""
        return sorted(self.list(tenant_id), key=lambda t: str(t.get("date", "")), reverse=True)


class CouponRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None):
        super().__init__(store, EntityKind.COUPONS, push_writer, policy)

    def find_active(self, code: str) -> Entity | None:
        needle = code.strip().upper()
        for coupon in self.list():
            if coupon.get("active") and str(coupon.get("code", "")).upper() == needle:
                return coupon
        return None


class NotificationRepository(EntityRepository):
    def __init__(self, store, push_writer=None, policy=None):
        super().__init__(store, EntityKind.NOTIFICATIONS, push_writer, policy)

    def replace_all(self, notifications: list[BaseModel | dict[str, Any]]) -> list[Entity]:
        """Swap the whole broadcast list and push every entry."""
        bodies = [as_body(n) for n in notifications]
        self.store.replace_partition(self.kind, lambda _: True, bodies)
        saved = self.store.read(self.kind)
        if self.push_writer is not None:
            for body in saved:
                self.push_writer.push(self.kind, body)
        return saved

    def active_for(self, plan: str) -> list[Entity]:
        premium = plan != "free"
        audiences = {"all", plan} | ({"all_premium"} if premium else set())
        return [n for n in self.list() if n.get("active") and n.get("targetAudience", "all") in audiences]


@dataclass
class Repositories:
    accounts: AccountRepository
    records: RecordRepository
    messages: MessageRepository
    transactions: TransactionRepository
    coupons: CouponRepository
    notifications: NotificationRepository

    def for_kind(self, kind: EntityKind | str) -> EntityRepository:
        return getattr(self, EntityKind.parse(kind).value)


def build_repositories(
    store: LocalCacheStore,
    push_writer: "PushWriter | None" = None,
    policy: EntityMergePolicy | None = None,
    remote: "RemoteMirrorClient | None" = None,
) -> Repositories:
    policy = policy or EntityMergePolicy()
    return Repositories(
        accounts=AccountRepository(store, push_writer, policy),
        records=RecordRepository(store, push_writer, policy),
        messages=MessageRepository(store, push_writer, policy, remote=remote),
        transactions=TransactionRepository(store, push_writer, policy),
        coupons=CouponRepository(store, push_writer, policy),
        notifications=NotificationRepository(store, push_writer, policy),
    )
