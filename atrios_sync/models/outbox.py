"""Durable queue of remote pushes awaiting (re)delivery."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class OutboxItem(Base):
    """Queue item for one entity's latest unsent remote operation."""

    __tablename__ = "sync_outbox"
    __table_args__ = (
        UniqueConstraint("kind", "entity_id", name="uq_outbox_kind_entity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[str] = mapped_column(String(50), index=True)
    entity_id: Mapped[str] = mapped_column(String(100), index=True)
    operation: Mapped[str] = mapped_column(String(20), default="upsert")  # upsert/delete
    payload_json: Mapped[dict | None] = mapped_column(JSON, default=None)
    base_json: Mapped[dict | None] = mapped_column(JSON, default=None)  # body before the first unsent change
    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending/retrying/failed
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<OutboxItem {self.kind}/{self.entity_id} {self.status} attempts={self.attempts}>"
