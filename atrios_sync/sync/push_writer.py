"""Push Writer - mirrors committed local writes to the remote store.

``push`` never blocks the caller and never raises: the local write has
already committed, the remote is a best-effort mirror. Pushes for the same
entity are chained so they reach the remote in the order they were issued.
When retries are enabled, a failed push is queued in the outbox; otherwise a
failed push is simply lost until the entity is written again.

A queued Account keeps the body it had before the local edit. A retry that
finds the row already on the remote sends only the fields the edit changed, so
flags another role set during the backoff window are left alone.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..remote.filters import eq
from ..store.kinds import EntityKind

if TYPE_CHECKING:
    from ..remote.client import RemoteMirrorClient
    from .outbox import Outbox

logger = logging.getLogger(__name__)

Key = tuple[EntityKind, str]

# Kinds written by more than one role; retries patch only the changed fields.
FIELD_PATCH_KINDS = (EntityKind.ACCOUNTS,)


class PushWriter:
    def __init__(self, remote: "RemoteMirrorClient", outbox: "Outbox | None" = None):
        self.remote = remote
        self.outbox = outbox
        self._tails: dict[Key, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def retries_enabled(self) -> bool:
        return self.outbox is not None and self.outbox.max_attempts > 1

    # Public API

    def push(
        self,
        kind: EntityKind,
        entity: dict[str, Any],
        base: dict[str, Any] | None = None,
    ) -> asyncio.Task | None:
        """Schedule a remote upsert of ``entity`` and return immediately.

        ``base`` is the cached body before this write, if there was one.
        """
        kind = EntityKind.parse(kind)
        payload = dict(entity)
        return self._submit(kind, payload["id"], "upsert", payload, base)

    def push_delete(self, kind: EntityKind, entity_id: str) -> asyncio.Task | None:
        """Schedule a remote delete-by-id and return immediately."""
        return self._submit(EntityKind.parse(kind), entity_id, "delete", None)

    def is_pending(self, kind: EntityKind, entity_id: str) -> bool:
        """True while a push for the entity is in flight or queued for retry."""
        tail = self._tails.get((EntityKind.parse(kind), entity_id))
        if tail is not None and not tail.done():
            return True
        return self.outbox is not None and self.outbox.has_pending(kind, entity_id)

    async def flush(self) -> None:
        """Wait for every in-flight push to settle."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def redeliver(self, kind: EntityKind, entity_id: str) -> bool | None:
        """Retry the queued outbox operation for one entity.

        Returns True when delivered, False when it failed again and None when
        there was nothing left to send (a newer push already succeeded).
        """
        kind = EntityKind.parse(kind)
        task = self._chain((kind, entity_id), lambda: self._redeliver(kind, entity_id))
        return await task

    # Internals

    def _submit(
        self,
        kind: EntityKind,
        entity_id: str,
        operation: str,
        payload: dict[str, Any] | None,
        base: dict[str, Any] | None = None,
    ) -> asyncio.Task | None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Called outside the event loop: hand the write to the outbox.
            if self.retries_enabled:
                self.outbox.enqueue(kind, entity_id, operation, payload, base=base, attempts=0)
            else:
                logger.warning("No event loop; dropped remote %s of %s/%s", operation, kind.value, entity_id)
            return None
        return self._chain(
            (kind, entity_id),
            lambda: self._deliver(kind, entity_id, operation, payload, base),
        )

    def _chain(self, key: Key, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        previous = self._tails.get(key)

        async def _run() -> Any:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await factory()

        task = asyncio.create_task(_run(), name=f"push-{key[0].value}-{key[1]}")
        self._tails[key] = task
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._forget(key, t))
        return task

    def _forget(self, key: Key, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._tails.get(key) is task:
            del self._tails[key]

    async def _send(self, kind: EntityKind, entity_id: str, operation: str, payload: dict | None) -> None:
        if operation == "delete":
            await self.remote.delete_where(kind, eq("id", entity_id))
        else:
            await self.remote.upsert(kind, payload or {"id": entity_id})

    async def _deliver(
        self,
        kind: EntityKind,
        entity_id: str,
        operation: str,
        payload: dict[str, Any] | None,
        base: dict[str, Any] | None = None,
    ) -> bool:
        try:
            await self._send(kind, entity_id, operation, payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Remote %s of %s/%s failed: %s", operation, kind.value, entity_id, exc)
            if self.retries_enabled:
                self.outbox.enqueue(kind, entity_id, operation, payload, base=base, error=str(exc))
            return False

        if self.outbox is not None:
            # This body supersedes anything queued earlier.
            self.outbox.mark_delivered(kind, entity_id)
        return True

    async def _redeliver(self, kind: EntityKind, entity_id: str) -> bool | None:
        if self.outbox is None:
            return None
        item = self.outbox.get(kind, entity_id)
        if item is None or item.status == "failed":
            return None
        try:
            await self._resend(kind, entity_id, item.operation, item.payload_json, item.base_json)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Retry of %s %s/%s failed: %s", item.operation, kind.value, entity_id, exc)
            self.outbox.mark_failed(kind, entity_id, str(exc))
            return False
        self.outbox.mark_delivered(kind, entity_id)
        return True

    async def _resend(
        self,
        kind: EntityKind,
        entity_id: str,
        operation: str,
        payload: dict[str, Any] | None,
        base: dict[str, Any] | None,
    ) -> None:
        if operation != "upsert" or kind not in FIELD_PATCH_KINDS or not base or not payload:
            await self._send(kind, entity_id, operation, payload)
            return
        changed = {
            key: value for key, value in payload.items()
            if key != "id" and (key not in base or base[key] != value)
        }
        if not changed:
            return
        if not await self.remote.select_where(kind, eq("id", entity_id)):
            await self.remote.upsert(kind, payload)
            return
        await self.remote.update_where(kind, changed, eq("id", entity_id))
