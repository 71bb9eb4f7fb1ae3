"""Declarative base shared by the cache and outbox tables.

Both tables live in the same on-device SQLite file, so ``Base.metadata``
creates the whole local schema in one ``create_all``.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
