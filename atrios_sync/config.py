"""Sync layer configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    environment: str = "development"
    cache_database_url: str = "sqlite:///atrios_cache.db"
    echo_sql: bool = False

    # Hosted store (Supabase / PostgREST)
    supabase_url: str = ""
    supabase_key: str = ""
    remote_schema: str = "public"
    # None disables the client-side timeout entirely.
    remote_timeout_seconds: float | None = 30.0
    remote_page_size: int = 1000

    # Realtime change channel
    realtime_enabled: bool = True
    realtime_heartbeat_seconds: float = 25.0
    realtime_reconnect_seconds: float = 5.0

    # Reconciliation periods
    tenant_poll_seconds: float = 5.0
    chat_poll_seconds: float = 10.0
    admin_poll_seconds: float = 15.0

    # Push retries (1 = fire once, never retry)
    push_max_attempts: int = 5
    push_retry_backoff_seconds: int = 15
    outbox_poll_seconds: float = 5.0

    # last_event_wins | versioned
    merge_strategy: str = "last_event_wins"

    model_config = {"env_prefix": "ATRIOS_", "env_file": ".env", "extra": "ignore"}

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def realtime_url(self) -> str:
        base = self.supabase_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/realtime/v1/websocket?apikey={self.supabase_key}&vsn=1.0.0"

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = SyncSettings()
