"""Key/value blob table backing the Local Cache Store.

One row per stable name (``accounts``, ``records``, ..., ``session``). Each
entity kind is serialized as a single JSON list under its name.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class CacheEntry(Base):
    __tablename__ = "cache_entry"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload_json: Mapped[object] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<CacheEntry {self.name!r}>"
