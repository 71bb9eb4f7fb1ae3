"""SyncService - wires the cache, remote mirror, outbox and watches together."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from .config import SyncSettings, settings as default_settings
from .database import build_engine, build_session_factory, create_tables
from .remote.client import RemoteConfig, RemoteMirrorClient
from .remote.filters import ALL, eq
from .remote.realtime import ChangeFeed, EventHandler, RealtimeChangeFeed
from .schemas.sync import HydrationResult
from .store.cache_store import LocalCacheStore
from .store.kinds import EntityKind
from .store.local_state import PdfDownloadCounter, SessionStore
from .store.repository import build_repositories
from .sync.hydration import HydrationMerger
from .sync.merge import EntityMergePolicy
from .sync.outbox import Outbox, OutboxRelay
from .sync.push_writer import PushWriter
from .sync.subscriber import ChangeListener, SyncWatch, WatchTarget

logger = logging.getLogger(__name__)

ADMIN_KINDS = (
    EntityKind.ACCOUNTS,
    EntityKind.MESSAGES,
    EntityKind.TRANSACTIONS,
    EntityKind.COUPONS,
    EntityKind.NOTIFICATIONS,
)


class SyncService:
    """Entry point for collaborators.

    Usage:
        async with SyncService() as sync:
            await sync.hydrate(tenant_id)
            sync.repos.records.save(record)
            async with sync.watch_tenant(tenant_id, listener=on_change):
                ...
    """

    def __init__(
        self,
        config: SyncSettings | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        remote: RemoteMirrorClient | None = None,
        feed: ChangeFeed | None = None,
    ):
        self.settings = config or default_settings

        if session_factory is None:
            engine = build_engine(self.settings.cache_database_url, self.settings.echo_sql)
            create_tables(engine)
            session_factory = build_session_factory(engine)
        self.store = LocalCacheStore(session_factory)
        self.policy = EntityMergePolicy(self.settings.merge_strategy)

        self._owns_remote = remote is None
        self.remote = remote or RemoteMirrorClient(RemoteConfig.from_settings(self.settings))
        if feed is None and self.settings.realtime_enabled and self.settings.remote_configured:
            feed = RealtimeChangeFeed.from_settings(self.settings)
        self.feed = feed

        self.outbox = Outbox(
            session_factory,
            max_attempts=self.settings.push_max_attempts,
            backoff_seconds=self.settings.push_retry_backoff_seconds,
        )
        self.push_writer = PushWriter(self.remote, self.outbox)
        self.relay = OutboxRelay(self.push_writer, self.outbox, poll_interval=self.settings.outbox_poll_seconds)
        self.repos = build_repositories(self.store, self.push_writer, self.policy, remote=self.remote)
        self.hydrator = HydrationMerger(self.store, self.remote, self.policy, self.push_writer.is_pending)
        self.pdf_downloads = PdfDownloadCounter(self.store)
        self.session_state = SessionStore(self.store)

        self._watches: list[SyncWatch] = []
        self._started = False

    # Lifecycle

    async def start(self) -> None:
        if self._started:
            return
        if self._owns_remote:
            await self.remote.__aenter__()
        if self.push_writer.retries_enabled:
            self.relay.start()
        self._started = True

    async def close(self) -> None:
        if not self._started:
            return
        for watch in list(self._watches):
            await watch.close()
        self._watches.clear()
        await self.relay.stop()
        await self.push_writer.flush()
        if self._owns_remote:
            await self.remote.__aexit__(None, None, None)
        self._started = False

    async def __aenter__(self) -> "SyncService":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # Operations

    async def hydrate(self, tenant_id: str) -> HydrationResult:
        return await self.hydrator.hydrate(tenant_id)

    def watch(
        self,
        targets: list[WatchTarget],
        *,
        poll_interval: float,
        listener: ChangeListener | None = None,
        on_channel_event: EventHandler | None = None,
        name: str = "watch",
    ) -> SyncWatch:
        """Build a watch over ``targets``; start it with ``async with``."""
        watch = SyncWatch(
            self.store,
            self.remote,
            targets,
            poll_interval=poll_interval,
            policy=self.policy,
            feed=self.feed,
            listener=listener,
            on_channel_event=on_channel_event,
            is_pending=self.push_writer.is_pending,
            on_close=self._forget_watch,
            name=name,
        )
        self._watches.append(watch)
        return watch

    def _forget_watch(self, watch: SyncWatch) -> None:
        if watch in self._watches:
            self._watches.remove(watch)

    def watch_tenant(self, tenant_id: str, listener: ChangeListener | None = None) -> SyncWatch:
        """The signed-in tenant's Account and support conversation."""
        return self.watch(
            [
                WatchTarget(EntityKind.ACCOUNTS, eq("id", tenant_id)),
                WatchTarget(EntityKind.MESSAGES, eq("companyId", tenant_id)),
            ],
            poll_interval=self.settings.tenant_poll_seconds,
            listener=listener,
            name=f"tenant-{tenant_id}",
        )

    def watch_chat(self, tenant_id: str, listener: ChangeListener | None = None) -> SyncWatch:
        return self.watch(
            [WatchTarget(EntityKind.MESSAGES, eq("companyId", tenant_id))],
            poll_interval=self.settings.chat_poll_seconds,
            listener=listener,
            name=f"chat-{tenant_id}",
        )

    def watch_admin(self, listener: ChangeListener | None = None) -> SyncWatch:
        """Every tenant's data, for the operator console."""
        return self.watch(
            [WatchTarget(kind, ALL) for kind in ADMIN_KINDS],
            poll_interval=self.settings.admin_poll_seconds,
            listener=listener,
            name="admin",
        )
