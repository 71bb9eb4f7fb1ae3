"""Pydantic schemas for entity bodies and sync results."""

from .entities import (
    Account,
    Coupon,
    Message,
    Notification,
    Record,
    Transaction,
    as_body,
)
from .sync import HydrationResult, OutboxDrainResult, ReconcileResult
