from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OrderState(str, Enum):
    CREATED = "CREATED"
    QUEUED = "QUEUED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentState(str, Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    FAILED = "FAILED"


ACTIVE_QUEUE_STATES = frozenset({OrderState.QUEUED, OrderState.PREPARING, OrderState.READY})
BACKLOG_STATES = frozenset({OrderState.QUEUED, OrderState.PREPARING})
TERMINAL_STATES = frozenset({OrderState.COMPLETED, OrderState.CANCELLED})


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)
    item_id: str | None = None
    prep_minutes: int | None = Field(default=None, ge=0, description="per-item prep time from the menu")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


def compute_total(items: list[LineItem]) -> Decimal:
    return sum((item.subtotal for item in items), Decimal("0"))


class OrderCreateRequest(BaseModel):
    customer_id: str = Field(min_length=1)
    line_items: list[LineItem] = Field(min_length=1)
    total_amount: Decimal = Field(ge=0)
    device_token: str | None = None

    @model_validator(mode="after")
    def _total_matches_items(self) -> "OrderCreateRequest":
        expected = compute_total(self.line_items)
        if expected != self.total_amount:
            raise ValueError(f"total_amount {self.total_amount} does not match line items sum {expected}")
        return self


class PaymentCallback(BaseModel):
    """Webhook body sent by the payment provider once a charge settles."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str | None = Field(default=None, alias="orderId")
    payment_id: str | None = Field(default=None, alias="paymentId")
    status: str | None = None

    @property
    def authorized(self) -> bool:
        return self.status == "captured"


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    customer_id: str
    line_items: list[LineItem]
    total_amount: Decimal
    payment_state: PaymentState
    order_state: OrderState
    batch_id: str | None = None
    queue_number: int | None = None
    queue_number_degraded: bool = False
    estimated_minutes: int | None = None
    payment_id: str | None = None
    device_token: str | None = None
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _to_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.order_state in TERMINAL_STATES

    def to_public_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"device_token", "version"})
        data["created_at"] = self.created_at.isoformat().replace("+00:00", "Z")
        data["updated_at"] = self.updated_at.isoformat().replace("+00:00", "Z")
        return data
