"""Read-time adapter for order records written by older clients.

Older clients stored the lifecycle under either ``status`` or ``orderStatus``
with lowercase values (``placed``, ``new``, ``preparing``, ``ready``,
``picked``) and the payment under ``paymentStatus`` (``paid``/``failed``).
Everything past this module sees a single ``OrderState``; the normalized value
is written back the next time the row is mutated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from canteen.core.errors import ValidationError
from canteen.domain.orders.models import LineItem, Order, OrderState, PaymentState
from canteen.persistence.models import OrderModel

logger = logging.getLogger(__name__)

_LEGACY_ORDER_STATES: dict[str, OrderState] = {
    "created": OrderState.CREATED,
    "pending": OrderState.CREATED,
    "preparing": OrderState.PREPARING,
    "ready": OrderState.READY,
    "picked": OrderState.COMPLETED,
    "completed": OrderState.COMPLETED,
    "cancelled": OrderState.CANCELLED,
    "canceled": OrderState.CANCELLED,
    "failed": OrderState.CANCELLED,
    "expired": OrderState.CANCELLED,
}

# "placed"/"new" meant "submitted"; whether it was queued depends on payment.
_LEGACY_SUBMITTED = {"placed", "new", "queued"}

_LEGACY_PAYMENT_STATES: dict[str, PaymentState] = {
    "pending": PaymentState.PENDING,
    "paid": PaymentState.AUTHORIZED,
    "captured": PaymentState.AUTHORIZED,
    "authorized": PaymentState.AUTHORIZED,
    "failed": PaymentState.FAILED,
}


def normalize_payment_state(value: str | None) -> PaymentState:
    if not value:
        return PaymentState.PENDING
    try:
        return PaymentState(value)
    except ValueError:
        pass
    state = _LEGACY_PAYMENT_STATES.get(value.strip().lower())
    if state is None:
        raise ValidationError(f"unknown payment state: {value}")
    return state


def normalize_order_state(
    order_state: str | None,
    legacy_status: str | None,
    payment_state: PaymentState,
) -> OrderState:
    if order_state:
        return OrderState(order_state)
    if not legacy_status:
        return OrderState.CREATED

    key = legacy_status.strip().lower()
    if key in _LEGACY_SUBMITTED:
        return OrderState.QUEUED if payment_state == PaymentState.AUTHORIZED else OrderState.CREATED
    state = _LEGACY_ORDER_STATES.get(key)
    if state is None:
        raise ValidationError(f"unknown legacy order status: {legacy_status}")
    return state


def row_state(row: OrderModel) -> OrderState:
    payment = normalize_payment_state(row.payment_state)
    return normalize_order_state(row.order_state, row.legacy_status, payment)


def migrate_row(row: OrderModel) -> bool:
    """Rewrite legacy fields in place; returns True when the row changed."""
    if row.order_state and row.legacy_status is None:
        return False
    payment = normalize_payment_state(row.payment_state)
    state = normalize_order_state(row.order_state, row.legacy_status, payment)
    row.order_state = state.value
    row.payment_state = payment.value
    row.legacy_status = None
    return True


def row_to_order(row: OrderModel) -> Order:
    payment = normalize_payment_state(row.payment_state)
    return Order(
        id=row.order_id,
        customer_id=row.customer_id,
        line_items=[LineItem.model_validate(item) for item in (row.line_items or [])],
        total_amount=Decimal(row.total_amount),
        payment_state=payment,
        order_state=normalize_order_state(row.order_state, row.legacy_status, payment),
        batch_id=row.batch_id,
        queue_number=row.queue_number,
        queue_number_degraded=bool(row.queue_number_degraded),
        estimated_minutes=row.estimated_minutes,
        payment_id=row.payment_id,
        device_token=row.device_token,
        cancel_reason=row.cancel_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version or 1,
    )


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, dict) and "seconds" in value:
        parsed = datetime.fromtimestamp(int(value["seconds"]), tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _legacy_items(raw_items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    items = []
    for raw in raw_items:
        item = LineItem(
            name=raw.get("name") or raw.get("itemId") or "item",
            unit_price=Decimal(str(raw.get("price", raw.get("unit_price", 0)))),
            quantity=int(raw.get("qty", raw.get("quantity", 1))),
            item_id=raw.get("itemId") or raw.get("item_id"),
            prep_minutes=raw.get("prepTime") or raw.get("prep_minutes"),
        )
        items.append(item.model_dump(mode="json"))
    return items


def legacy_document_to_row(document: dict[str, Any], batch_id: str) -> OrderModel:
    """Build a row from an exported legacy order document.

    Status fields are kept verbatim in ``legacy_status`` so the read adapter,
    not the importer, decides what they mean. Values the adapter cannot read
    are rejected here so they never reach the store.
    """
    order_id = document.get("id") or document.get("orderId")
    customer_id = document.get("userId") or document.get("customerId")
    if not order_id or not customer_id:
        raise ValidationError("legacy document requires id and userId")

    legacy_status = document.get("status") or document.get("orderStatus")
    if document.get("status") and document.get("orderStatus") and document["status"] != document["orderStatus"]:
        logger.warning(
            "legacy order %s carries conflicting status=%s orderStatus=%s; using status",
            order_id,
            document["status"],
            document["orderStatus"],
        )

    payment = normalize_payment_state(document.get("paymentStatus"))
    normalize_order_state(None, legacy_status, payment)
    created_at = _parse_timestamp(document.get("createdAt")) or datetime.now(timezone.utc)
    updated_at = _parse_timestamp(document.get("updatedAt")) or created_at
    queue_number = document.get("queueNumber")

    return OrderModel(
        order_id=str(order_id),
        customer_id=str(customer_id),
        line_items=_legacy_items(document.get("items", [])),
        total_amount=Decimal(str(document.get("totalAmount", 0))),
        payment_state=payment.value,
        order_state=None,
        legacy_status=legacy_status,
        batch_id=batch_id if isinstance(queue_number, int) else None,
        queue_number=queue_number if isinstance(queue_number, int) else None,
        estimated_minutes=document.get("estimatedMinutes"),
        payment_id=document.get("paymentId"),
        device_token=document.get("deviceToken"),
        created_at=created_at,
        updated_at=updated_at,
    )
