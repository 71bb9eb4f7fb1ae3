"""Outbox for remote pushes that could not be delivered.

One row per (kind, entity id): a newer failed push replaces the queued body,
so a retry always sends the latest local state. Rows are removed once
delivered; after ``max_attempts`` they stay as ``failed`` for inspection.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session, sessionmaker

from ..models.outbox import OutboxItem
from ..schemas.sync import OutboxDrainResult
from ..store.kinds import EntityKind

if TYPE_CHECKING:
    from .push_writer import PushWriter

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "retrying")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Outbox:
    """Persistent retry queue stored next to the cache."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        max_attempts: int = 5,
        backoff_seconds: int = 15,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def enqueue(
        self,
        kind: EntityKind,
        entity_id: str,
        operation: str,
        payload: dict[str, Any] | None,
        *,
        base: dict[str, Any] | None = None,
        error: str | None = None,
        attempts: int = 1,
    ) -> OutboxItem:
        """Queue (or replace) the pending operation for one entity.

        ``attempts`` counts deliveries already tried; the first retry is
        scheduled ``backoff * attempts`` seconds from now. ``base`` is the body
        the entity had before its first unsent change; a replaced item keeps
        the base it was queued with.
        """
        kind = EntityKind.parse(kind)
        now = _now()
        with self._session_factory() as db:
            item = self._find(db, kind, entity_id)
            if item is None:
                item = OutboxItem(kind=kind.value, entity_id=entity_id, base_json=base)
                db.add(item)
            item.operation = operation
            item.payload_json = payload
            item.attempts = attempts
            item.max_attempts = self.max_attempts
            item.error_message = error
            item.status = "retrying" if attempts else "pending"
            item.available_at = now + timedelta(seconds=self.backoff_seconds * attempts)
            db.commit()
            db.refresh(item)
            return item

    def get(self, kind: EntityKind, entity_id: str) -> OutboxItem | None:
        with self._session_factory() as db:
            return self._find(db, EntityKind.parse(kind), entity_id)

    def mark_delivered(self, kind: EntityKind, entity_id: str) -> bool:
        """Remove the queued operation once the remote has it."""
        with self._session_factory() as db:
            item = self._find(db, EntityKind.parse(kind), entity_id)
            if item is None:
                return False
            db.delete(item)
            db.commit()
            return True

    def claim_due(self, limit: int = 50) -> list[OutboxItem]:
        """Active items whose retry time has come, oldest first."""
        stmt = (
            select(OutboxItem)
            .where(
                and_(
                    OutboxItem.status.in_(ACTIVE_STATUSES),
                    OutboxItem.available_at <= _now(),
                )
            )
            .order_by(OutboxItem.available_at.asc(), OutboxItem.created_at.asc())
            .limit(limit)
        )
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    def mark_failed(self, kind: EntityKind, entity_id: str, error: str) -> OutboxItem | None:
        """Record a failed retry: schedule the next one with backoff, or give up."""
        now = _now()
        with self._session_factory() as db:
            item = self._find(db, EntityKind.parse(kind), entity_id)
            if item is None:
                return None
            item.attempts += 1
            item.error_message = error
            if item.attempts < item.max_attempts:
                item.status = "retrying"
                item.available_at = now + timedelta(seconds=self.backoff_seconds * item.attempts)
            else:
                item.status = "failed"
                logger.warning(
                    "Giving up on %s %s/%s after %d attempts: %s",
                    item.operation, item.kind, item.entity_id, item.attempts, error,
                )
            db.commit()
            db.refresh(item)
            return item

    def has_pending(self, kind: EntityKind, entity_id: str) -> bool:
        item = self.get(kind, entity_id)
        return item is not None and item.status in ACTIVE_STATUSES

    def pending_for(self, kind: EntityKind) -> list[OutboxItem]:
        stmt = select(OutboxItem).where(
            OutboxItem.kind == EntityKind.parse(kind).value,
            OutboxItem.status.in_(ACTIVE_STATUSES),
        )
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    def list_items(self) -> list[OutboxItem]:
        stmt = select(OutboxItem).order_by(OutboxItem.created_at.asc())
        with self._session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    def reset_failed(self) -> int:
        """Give every failed item a fresh set of attempts, due immediately."""
        stmt = (
            update(OutboxItem)
            .where(OutboxItem.status == "failed")
            .values(status="pending", attempts=0, available_at=_now())
        )
        with self._session_factory() as db:
            count = db.execute(stmt).rowcount
            db.commit()
        return count or 0

    @staticmethod
    def _find(db: Session, kind: EntityKind, entity_id: str) -> OutboxItem | None:
        stmt = select(OutboxItem).where(
            OutboxItem.kind == kind.value,
            OutboxItem.entity_id == entity_id,
        )
        return db.execute(stmt).scalar_one_or_none()


class OutboxRelay:
    """Periodically re-delivers due outbox items through the Push Writer."""

    def __init__(self, push_writer: "PushWriter", outbox: Outbox, *, poll_interval: float = 5.0):
        self.push_writer = push_writer
        self.outbox = outbox
        self.poll_interval = poll_interval
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="sync-outbox-relay")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def drain_once(self, limit: int = 50) -> OutboxDrainResult:
        result = OutboxDrainResult()
        items = self.outbox.claim_due(limit)
        if not items:
            return result
        outcomes = await asyncio.gather(
            *(self.push_writer.redeliver(EntityKind.parse(item.kind), item.entity_id) for item in items)
        )
        for delivered in outcomes:
            if delivered is None:
                continue
            if delivered:
                result.delivered += 1
            else:
                result.retrying += 1
        result.failed = sum(1 for item in self.outbox.list_items() if item.status == "failed")
        if result.delivered:
            logger.info("Outbox delivered %d queued push(es)", result.delivered)
        return result

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.drain_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover
                logger.exception("Outbox relay pass failed")
            await asyncio.sleep(self.poll_interval)
