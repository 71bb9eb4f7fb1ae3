"""Local database models - re-exports all models and Base.metadata."""

from .base import Base
from .cache import CacheEntry
from .outbox import OutboxItem

__all__ = [
    "Base",
    "CacheEntry",
    "OutboxItem",
]
