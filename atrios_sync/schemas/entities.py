"""Entity schemas for the six synchronized kinds.

Bodies travel as camelCase JSON objects (the hosted tables use those column
names). Unknown fields are preserved so the sync layer never drops data it
does not model.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanType(str, Enum):
    FREE = "free"
    PREMIUM_MONTHLY = "premium_monthly"
    PREMIUM_ANNUAL = "premium_annual"
    PREMIUM = "premium"


class RecordStatus(str, Enum):
    PENDING = "pendente"
    APPROVED = "aprovado"
    REJECTED = "rejeitado"
    COMPLETED = "concluído"


class EntityBody(BaseModel):
    """Common base: string id, camelCase aliases, extra fields kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        use_enum_values=True,
    )

    id: str

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Account(EntityBody):
    name: str
    email: str
    password: str | None = None
    logo: str | None = None
    qr_code: str | None = None
    address: str | None = None
    nif: str | None = None
    phone: str | None = None
    plan: PlanType = PlanType.FREE
    verified: bool = False
    created_at: str
    first_login_at: str | None = None
    subscription_expires_at: str | None = None
    can_edit_sensitive_data: bool | None = None
    unlock_requested: bool | None = None
    last_locale: str | None = None
    is_blocked: bool | None = None
    is_manual: bool | None = None
    manual_payment_proof: str | None = None
    stripe_customer_id: str | None = Field(default=None, alias="stripe_customer_id")
    stripe_subscription_id: str | None = Field(default=None, alias="stripe_subscription_id")


class ServiceItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    description: str
    quantity: float
    unit: str
    price_per_unit: float
    total: float


class PaymentEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    date: str
    amount: float
    proof_url: str | None = None
    notes: str | None = None


class ExpenseEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    description: str
    quantity: float
    unit: str
    price_per_unit: float
    amount: float
    date: str


class Record(EntityBody):
    """A quote/budget document owned by one tenant."""

    company_id: str
    client_name: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    work_location: str = ""
    work_number: str = ""
    work_postal_code: str = ""
    client_nif: str = ""
    services_selected: list[str] = []
    items: list[ServiceItem] = []
    expenses: list[ExpenseEntry] = []
    payments: list[PaymentEntry] = []
    total_amount: float = 0.0
    status: RecordStatus = RecordStatus.PENDING
    created_at: str
    observations: str | None = None
    include_iva: bool = False
    iva_percentage: float = 0.0
    validity: str | None = None
    payment_method: str | None = None


class Message(EntityBody):
    company_id: str
    sender_role: str  # user | master
    content: str
    translated_content: str | None = None
    timestamp: str
    read: bool = False


class Transaction(EntityBody):
    company_id: str
    company_name: str
    plan_type: PlanType
    amount: float
    iva_amount: float
    total_amount: float
    coupon_used: str | None = None
    date: str


class Coupon(EntityBody):
    code: str
    discount_percentage: float
    active: bool = True
    created_at: str


class Notification(EntityBody):
    image_url: str
    target_audience: str = "all"  # all | free | premium_monthly | premium_annual | all_premium
    active: bool = True
    created_at: str


def as_body(entity: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Normalize a schema instance or mapping into a plain JSON body."""
    if isinstance(entity, EntityBody):
        return entity.to_body()
    if isinstance(entity, BaseModel):
        return entity.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(entity)
