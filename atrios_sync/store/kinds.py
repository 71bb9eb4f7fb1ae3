"""Entity kinds handled by the sync layer."""

from __future__ import annotations

from enum import Enum


class EntityKind(str, Enum):
    """The six synchronized entity kinds, valued by their local blob name."""

    ACCOUNTS = "accounts"
    RECORDS = "records"
    MESSAGES = "messages"
    TRANSACTIONS = "transactions"
    COUPONS = "coupons"
    NOTIFICATIONS = "notifications"

    @property
    def storage_key(self) -> str:
        return self.value

    @property
    def remote_table(self) -> str:
        return _REMOTE_TABLES[self]

    @property
    def tenant_field(self) -> str | None:
        """Field holding the owning tenant id, or None for global kinds."""
        return _TENANT_FIELDS[self]

    def tenant_of(self, entity: dict) -> str | None:
        field = self.tenant_field
        if field is None:
            return None
        return entity.get(field)

    @classmethod
    def parse(cls, value: "str | EntityKind") -> "EntityKind":
        """Accept a kind, its blob name or its remote table name."""
        if isinstance(value, cls):
            return value
        for kind in cls:
            if value in (kind.value, kind.remote_table):
                return kind
        raise ValueError(f"Unknown entity kind: {value!r}")


_REMOTE_TABLES = {
    EntityKind.ACCOUNTS: "companies",
    EntityKind.RECORDS: "budgets",
    EntityKind.MESSAGES: "messages",
    EntityKind.TRANSACTIONS: "transactions",
    EntityKind.COUPONS: "coupons",
    EntityKind.NOTIFICATIONS: "notifications",
}

_TENANT_FIELDS = {
    EntityKind.ACCOUNTS: "id",
    EntityKind.RECORDS: "companyId",
    EntityKind.MESSAGES: "companyId",
    EntityKind.TRANSACTIONS: "companyId",
    EntityKind.COUPONS: None,
    EntityKind.NOTIFICATIONS: None,
}

# Auxiliary blobs stored next to the entity kinds.
PDF_DOWNLOAD_COUNTER_KEY = "pdf-download-counter"
SESSION_KEY = "session"
