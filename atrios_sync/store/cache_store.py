"""Local Cache Store - durable per-device blob table, one JSON list per kind.

Every operation is synchronous and commits before returning, so the cache
always reflects the last successful write. Nothing here awaits, which keeps
each read-modify-write step atomic with respect to other asyncio tasks.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models.cache import CacheEntry
from .kinds import EntityKind


Entity = dict[str, Any]


def _require_entity(entity: Any) -> Entity:
    if not isinstance(entity, Mapping):
        raise ValueError(f"Entity must be a mapping, got {type(entity).__name__}")
    entity_id = entity.get("id")
    if not isinstance(entity_id, str) or not entity_id:
        raise ValueError("Entity must carry a non-empty string 'id'")
    return copy.deepcopy(dict(entity))


class LocalCacheStore:
    """Key/value cache with one blob per entity kind.

    Usage:
        store = LocalCacheStore(session_factory)
        store.write(EntityKind.RECORDS, {"id": "R1", "companyId": "A"})
        store.read_one(EntityKind.RECORDS, "R1")
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # Raw blobs

    def get_value(self, name: str, default: Any = None) -> Any:
        with self._session_factory() as db:
            entry = db.get(CacheEntry, name)
            if entry is None:
                return copy.deepcopy(default)
            return copy.deepcopy(entry.payload_json)

    def set_value(self, name: str, value: Any) -> None:
        with self._session_factory() as db:
            self._put(db, name, value)
            db.commit()

    def remove_value(self, name: str) -> None:
        with self._session_factory() as db:
            entry = db.get(CacheEntry, name)
            if entry is not None:
                db.delete(entry)
                db.commit()

    def names(self) -> list[str]:
        with self._session_factory() as db:
            return list(db.execute(select(CacheEntry.name).order_by(CacheEntry.name)).scalars())

    # Entity kinds

    def read(self, kind: EntityKind) -> list[Entity]:
        """All cached entities of a kind, in insertion order."""
        return self.get_value(EntityKind.parse(kind).storage_key, default=[])

    def read_one(self, kind: EntityKind, entity_id: str) -> Entity | None:
        for entity in self.read(kind):
            if entity.get("id") == entity_id:
                return entity
        return None

    def write(self, kind: EntityKind, entity: Mapping[str, Any]) -> Entity:
        """Insert when the id is unseen, otherwise replace the entry in place."""
        body = _require_entity(entity)
        key = EntityKind.parse(kind).storage_key
        with self._session_factory() as db:
            items = self._load(db, key)
            for index, existing in enumerate(items):
                if existing.get("id") == body["id"]:
                    items[index] = body
                    break
            else:
                items.append(body)
            self._put(db, key, items)
            db.commit()
        return copy.deepcopy(body)

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        key = EntityKind.parse(kind).storage_key
        with self._session_factory() as db:
            items = self._load(db, key)
            kept = [item for item in items if item.get("id") != entity_id]
            if len(kept) == len(items):
                return False
            self._put(db, key, kept)
            db.commit()
        return True

    def delete_where(self, kind: EntityKind, predicate: Callable[[Entity], bool]) -> int:
        key = EntityKind.parse(kind).storage_key
        with self._session_factory() as db:
            items = self._load(db, key)
            kept = [item for item in items if not predicate(item)]
            removed = len(items) - len(kept)
            if removed:
                self._put(db, key, kept)
                db.commit()
        return removed

    def replace_partition(
        self,
        kind: EntityKind,
        belongs: Callable[[Entity], bool],
        fresh: Iterable[Mapping[str, Any]],
    ) -> int:
        """Drop every entity matching ``belongs`` and append ``fresh``.

        Entities outside the partition are left untouched and keep their
        order. ``fresh`` is deduplicated by id (last occurrence wins) and any
        entity outside the partition sharing an id with it is replaced, so the
        blob never holds two entries for one id. Returns the number written.
        """
        incoming: dict[str, Entity] = {}
        for entity in fresh:
            body = _require_entity(entity)
            incoming[body["id"]] = body

        key = EntityKind.parse(kind).storage_key
        with self._session_factory() as db:
            items = self._load(db, key)
            others = [
                item for item in items
                if not belongs(item) and item.get("id") not in incoming
            ]
            self._put(db, key, others + list(incoming.values()))
            db.commit()
        return len(incoming)

    # Internals

    @staticmethod
    def _load(db: Session, name: str) -> list[Entity]:
        entry = db.get(CacheEntry, name)
        if entry is None or not isinstance(entry.payload_json, list):
            return []
        return copy.deepcopy(entry.payload_json)

    @staticmethod
    def _put(db: Session, name: str, value: Any) -> None:
        entry = db.get(CacheEntry, name)
        if entry is None:
            db.add(CacheEntry(name=name, payload_json=value))
        else:
            # Reassign so the JSON column is flagged dirty.
            entry.payload_json = value
