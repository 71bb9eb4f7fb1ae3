"""Sync result schemas."""

from __future__ import annotations

from pydantic import BaseModel


class HydrationResult(BaseModel):
    tenant_id: str
    account: bool = False
    records: int = 0
    messages: int = 0
    kept_pending: int = 0
    errors: list[str] = []

    @property
    def complete(self) -> bool:
        return not self.errors


class ReconcileResult(BaseModel):
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    stale: int = 0
    pending: int = 0
    errors: list[str] = []

    @property
    def changed(self) -> int:
        return self.inserted + self.updated


class OutboxDrainResult(BaseModel):
    delivered: int = 0
    retrying: int = 0
    failed: int = 0
