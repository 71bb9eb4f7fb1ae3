"""Change subscription and periodic reconciliation.

A :class:`SyncWatch` owns a set of watched remote slices, one live channel per
slice and a single poll timer. The poll pass is the only code path that
writes remote state into the cache: it re-reads each slice and diff-merges it
through the Entity Merge Policy. Channel events only wake the pass early.
Closing the watch tears down the timer and every channel together.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..remote.filters import ALL, Predicate
from ..remote.realtime import ChangeEvent, ChangeFeed, EventHandler, EventType, Subscription, dispatch_event
from ..schemas.sync import ReconcileResult
from ..store.kinds import EntityKind
from .merge import EntityMergePolicy, MergeOutcome

if TYPE_CHECKING:
    from ..remote.client import RemoteMirrorClient
    from ..store.cache_store import LocalCacheStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchTarget:
    """A remote slice to keep mirrored: a kind plus an optional filter."""

    kind: EntityKind
    predicate: Predicate = ALL

    def describe(self) -> str:
        return f"{self.kind.value}[{self.predicate.describe()}]"


@dataclass
class SyncChange:
    """An entity the reconciliation pass inserted or replaced in the cache."""

    kind: EntityKind
    outcome: MergeOutcome
    entity: dict[str, Any]
    previous: dict[str, Any] | None = None

    @property
    def event_type(self) -> EventType:
        return EventType.INSERT if self.outcome is MergeOutcome.INSERTED else EventType.UPDATE

    def flag_raised(self, field: str) -> bool:
        """True when ``field`` went from falsy (or absent) to truthy."""
        before = bool(self.previous.get(field)) if self.previous else False
        return not before and bool(self.entity.get(field))


ChangeListener = Callable[[SyncChange], "Awaitable[None] | None"]
PendingCheck = Callable[[EntityKind, str], bool]


class SyncWatch:
    """Keeps the cache converged with a set of remote slices.

    Usage:
        async with SyncWatch(store, remote, targets, poll_interval=5, feed=feed,
                             listener=on_change) as watch:
            ...  # cache converges while the block runs
    """

    def __init__(
        self,
        store: "LocalCacheStore",
        remote: "RemoteMirrorClient",
        targets: list[WatchTarget],
        *,
        poll_interval: float,
        policy: EntityMergePolicy | None = None,
        feed: ChangeFeed | None = None,
        listener: ChangeListener | None = None,
        on_channel_event: EventHandler | None = None,
        is_pending: PendingCheck | None = None,
        on_close: Callable[["SyncWatch"], None] | None = None,
        name: str = "watch",
    ):
        if not targets:
            raise ValueError("SyncWatch needs at least one target")
        self.store = store
        self.remote = remote
        self.targets = list(targets)
        self.poll_interval = poll_interval
        self.policy = policy or EntityMergePolicy()
        self.feed = feed
        self.listener = listener
        self.on_channel_event = on_channel_event
        self.is_pending = is_pending
        self.on_close = on_close
        self.name = name

        self.subscriptions: list[Subscription] = []
        self.passes = 0
        self.last_result: ReconcileResult | None = None
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        if self.feed is not None:
            for target in self.targets:
                try:
                    sub = await self.feed.subscribe(target.kind, target.predicate, self._on_event)
                    self.subscriptions.append(sub)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.warning(
                        "%s: channel for %s unavailable, relying on polling: %s",
                        self.name, target.describe(), exc,
                    )
        self._task = asyncio.create_task(self._run(), name=f"sync-{self.name}")

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        subscriptions, self.subscriptions = self.subscriptions, []
        for sub in subscriptions:
            try:
                await sub.close()
            except Exception:
                logger.warning("%s: failed to close channel", self.name, exc_info=True)
        if self.on_close is not None:
            self.on_close(self)

    async def __aenter__(self) -> "SyncWatch":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    def wake(self) -> None:
        """Run the next reconciliation pass now instead of at the next tick."""
        self._wake.set()

    # Reconciliation

    async def reconcile_once(self) -> ReconcileResult:
        result = ReconcileResult()
        for target in self.targets:
            try:
                rows = await self.remote.select_where(target.kind, target.predicate)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("%s: poll of %s failed: %s", self.name, target.describe(), exc)
                result.errors.append(f"{target.describe()}: {exc}")
                continue

            for change in self._merge_rows(target.kind, rows, result):
                await self._notify(change)

        self.passes += 1
        self.last_result = result
        if result.changed:
            logger.debug("%s: pass %d merged %d change(s)", self.name, self.passes, result.changed)
        return result

    def _merge_rows(
        self,
        kind: EntityKind,
        rows: list[dict[str, Any]],
        result: ReconcileResult,
    ) -> list[SyncChange]:
        # Synchronous on purpose: no other task can touch the cache mid-merge.
        changes: list[SyncChange] = []
        for row in rows:
            entity_id = row.get("id")
            if not isinstance(entity_id, str) or not entity_id:
                continue
            if self.is_pending is not None and self.is_pending(kind, entity_id):
                result.pending += 1
                continue
            outcome, previous = self.policy.apply(self.store, kind, row)
            if outcome is MergeOutcome.INSERTED:
                result.inserted += 1
            elif outcome.changed:
                result.updated += 1
            elif outcome is MergeOutcome.STALE:
                result.stale += 1
                continue
            else:
                result.unchanged += 1
                continue
            changes.append(SyncChange(kind, outcome, self.store.read_one(kind, entity_id) or row, previous))
        return changes

    async def _notify(self, change: SyncChange) -> None:
        if self.listener is None:
            return
        try:
            outcome = self.listener(change)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: change listener failed for %s/%s",
                             self.name, change.kind.value, change.entity.get("id"))

    async def _on_event(self, event: ChangeEvent) -> None:
        logger.debug("%s: %s on %s/%s", self.name, event.event_type.value,
                     event.kind.value, event.record.get("id"))
        if self.on_channel_event is not None:
            await dispatch_event(self.on_channel_event, event)
        self.wake()

    async def _run(self) -> None:
        while True:
            self._wake.clear()
            try:
                await self.reconcile_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s: reconciliation pass failed", self.name)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
