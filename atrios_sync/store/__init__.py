"""On-device cache, repositories and auxiliary local state."""

from .cache_store import Entity, LocalCacheStore
from .kinds import EntityKind
from .local_state import PdfDownloadCounter, SessionStore, generate_short_id
from .repository import Repositories, build_repositories

__all__ = [
    "Entity",
    "LocalCacheStore",
    "EntityKind",
    "PdfDownloadCounter",
    "SessionStore",
    "generate_short_id",
    "Repositories",
    "build_repositories",
]
