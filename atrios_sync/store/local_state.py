"""Device-local state kept next to the entity blobs.

Neither entry is mirrored to the remote.
"""

from __future__ import annotations

import secrets
import string
from typing import Any

from .cache_store import LocalCacheStore
from .kinds import PDF_DOWNLOAD_COUNTER_KEY, SESSION_KEY

SHORT_ID_PREFIX = "ATR-"
_SHORT_ID_ALPHABET = string.digits + string.ascii_uppercase

# Views that may be restored without a signed-in tenant.
ANONYMOUS_VIEWS = frozenset({"master", "login", "signup", "verify"})

DEFAULT_SESSION = {
    "companyId": None,
    "view": "landing",
    "activeTab": "dashboard",
    "currencyCode": "EUR",
}


def generate_short_id() -> str:
    """Human-friendly tenant code, e.g. ``ATR-7K2Q9Z``."""
    return SHORT_ID_PREFIX + "".join(secrets.choice(_SHORT_ID_ALPHABET) for _ in range(6))


class PdfDownloadCounter:
    def __init__(self, store: LocalCacheStore):
        self.store = store

    def get(self, tenant_id: str) -> int:
        counts = self.store.get_value(PDF_DOWNLOAD_COUNTER_KEY, default={})
        return int(counts.get(tenant_id, 0))

    def increment(self, tenant_id: str) -> int:
        counts = self.store.get_value(PDF_DOWNLOAD_COUNTER_KEY, default={})
        counts[tenant_id] = int(counts.get(tenant_id, 0)) + 1
        self.store.set_value(PDF_DOWNLOAD_COUNTER_KEY, counts)
        return counts[tenant_id]


class SessionStore:
    """Remembers which tenant and screen to restore on the next start."""

    def __init__(self, store: LocalCacheStore):
        self.store = store

    def get(self) -> dict[str, Any] | None:
        return self.store.get_value(SESSION_KEY)

    def clear(self) -> None:
        self.store.remove_value(SESSION_KEY)

    def save(
        self,
        company_id: str | None,
        view: str | None = None,
        active_tab: str | None = None,
        currency_code: str | None = None,
    ) -> dict[str, Any] | None:
        previous = self.get()
        final_view = view or (previous or {}).get("view") or DEFAULT_SESSION["view"]

        if final_view == "landing" or (not company_id and final_view not in ANONYMOUS_VIEWS):
            self.clear()
            return None

        session = {**DEFAULT_SESSION, **(previous or {})}
        session.update(
            companyId=company_id or None,
            view=final_view,
            activeTab=active_tab or session.get("activeTab") or DEFAULT_SESSION["activeTab"],
            currencyCode=currency_code or session.get("currencyCode") or DEFAULT_SESSION["currencyCode"],
        )
        self.store.set_value(SESSION_KEY, session)
        return session
