"""Entity Merge Policy - how an incoming entity combines with the cached one."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..store.cache_store import LocalCacheStore
    from ..store.kinds import EntityKind

VERSION_FIELD = "syncVersion"
UPDATED_AT_FIELD = "updatedAt"


class MergeStrategy(str, Enum):
    LAST_EVENT_WINS = "last_event_wins"
    VERSIONED = "versioned"


class MergeOutcome(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    PATCHED = "patched"
    UNCHANGED = "unchanged"
    STALE = "stale"

    @property
    def changed(self) -> bool:
        return self in (MergeOutcome.INSERTED, MergeOutcome.REPLACED, MergeOutcome.PATCHED)


def _version_of(entity: dict[str, Any] | None) -> int:
    if not entity:
        return 0
    value = entity.get(VERSION_FIELD)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


class EntityMergePolicy:
    """Merge-by-id rule shared by hydration, reconciliation and local saves.

    ``last_event_wins`` replaces whatever is cached with every incoming
    snapshot; it cannot tell a stale remote snapshot from an authoritative
    update. ``versioned`` compares the ``syncVersion`` counter stamped by
    :meth:`stamp` and rejects incoming bodies older than the cached one.
    """

    def __init__(self, strategy: MergeStrategy | str = MergeStrategy.LAST_EVENT_WINS):
        self.strategy = MergeStrategy(strategy)

    @property
    def versioned(self) -> bool:
        return self.strategy is MergeStrategy.VERSIONED

    def merge(
        self,
        current: dict[str, Any] | None,
        incoming: dict[str, Any],
        *,
        partial: bool = False,
    ) -> tuple[dict[str, Any] | None, MergeOutcome]:
        """Return ``(result, outcome)``; ``result`` is None when nothing changes."""
        if current is None:
            return copy.deepcopy(incoming), MergeOutcome.INSERTED

        if self.versioned and not partial and _version_of(incoming) < _version_of(current):
            return None, MergeOutcome.STALE

        if partial:
            merged = {**current, **copy.deepcopy(incoming)}
            if merged == current:
                return None, MergeOutcome.UNCHANGED
            return merged, MergeOutcome.PATCHED

        if incoming == current:
            return None, MergeOutcome.UNCHANGED
        return copy.deepcopy(incoming), MergeOutcome.REPLACED

    def apply(
        self,
        store: "LocalCacheStore",
        kind: "EntityKind",
        incoming: dict[str, Any],
        *,
        partial: bool = False,
    ) -> tuple[MergeOutcome, dict[str, Any] | None]:
        """Merge ``incoming`` into the cache; returns ``(outcome, previous)``."""
        previous = store.read_one(kind, incoming["id"])
        result, outcome = self.merge(previous, incoming, partial=partial)
        if result is not None:
            store.write(kind, result)
        return outcome, previous

    def stamp(self, current: dict[str, Any] | None, body: dict[str, Any]) -> dict[str, Any]:
        """Bump the logical clock of a locally saved body (versioned mode only)."""
        if not self.versioned:
            return body
        stamped = dict(body)
        stamped[VERSION_FIELD] = max(_version_of(current), _version_of(body)) + 1
        stamped[UPDATED_AT_FIELD] = datetime.now(timezone.utc).isoformat()
        return stamped
