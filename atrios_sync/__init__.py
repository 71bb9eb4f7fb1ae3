"""Local-first synchronization layer for the Atrios budgeting app.

Usage:
    from atrios_sync import SyncService

    async with SyncService() as sync:
        await sync.hydrate(tenant_id)
        sync.repos.records.save(record)
"""

from .service import SyncService

__all__ = ["SyncService"]
