from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from canteen.core.errors import DeliveryFailure, RecipientUnreachable
from canteen.delivery.push import PushMessage, PushNotifier, build_notifier
from canteen.domain.orders.models import Order, OrderState
from canteen.persistence import pg
from canteen.persistence.models import CustomerModel, NotificationReceiptModel, OrderModel

logger = logging.getLogger(__name__)

READY_TITLE = "Order Ready for Pickup!"


@dataclass(frozen=True)
class Anomaly:
    """Something the caller should know about that did not fail the operation."""

    kind: str
    order_id: str
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "order_id": self.order_id, "detail": self.detail}


@dataclass(frozen=True)
class NotificationOutcome:
    order_id: str
    status: str
    payload: dict[str, Any] | None = None
    anomaly: Anomaly | None = None


def idempotency_key(order_id: str, target: OrderState) -> str:
    return f"{order_id}:{target.value}"


def build_ready_message(order: Order, recipient: str) -> PushMessage:
    ticket = str(order.queue_number) if order.queue_number is not None else order.id[:8]
    return PushMessage(
        recipient=recipient,
        title=READY_TITLE,
        body=f"Your order #{ticket} is ready for pickup.",
        data={
            "orderId": order.id,
            "queueNumber": str(order.queue_number) if order.queue_number is not None else "",
            "status": "ready",
            "type": "order_ready",
        },
    )


class NotificationTrigger:
    """Fires the ready notification once per order after the READY transition commits."""

    def __init__(self, notifier: PushNotifier | None = None):
        self.notifier = notifier or build_notifier()

    def _claim(self, key: str, order: Order, target: OrderState) -> bool:
        now = datetime.now(timezone.utc)
        try:
            with pg.session_scope() as session:
                session.add(
                    NotificationReceiptModel(
                        idempotency_key=key,
                        order_id=order.id,
                        target_state=target.value,
                        status="claimed",
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.flush()
        except IntegrityError:
            return False
        return True

    def _record(self, key: str, status: str, detail: str | None = None) -> None:
        with pg.session_scope() as session:
            session.execute(
                update(NotificationReceiptModel)
                .where(NotificationReceiptModel.idempotency_key == key)
                .values(status=status, detail=detail, updated_at=datetime.now(timezone.utc))
            )

    def _resolve_recipient(self, order: Order) -> str | None:
        if order.device_token:
            return order.device_token
        with pg.session_scope() as session:
            return session.scalar(
                select(CustomerModel.device_token).where(CustomerModel.customer_id == order.customer_id)
            )

    def _forget_recipient(self, order: Order, token: str) -> None:
        now = datetime.now(timezone.utc)
        with pg.session_scope() as session:
            customer = session.get(CustomerModel, order.customer_id)
            if customer is not None and customer.device_token == token:
                customer.device_token = None
                customer.updated_at = now
            row = session.get(OrderModel, order.id)
            if row is not None and row.device_token == token:
                row.device_token = None

    def on_transition(self, order: Order, from_state: OrderState, to_state: OrderState) -> NotificationOutcome | None:
        if to_state != OrderState.READY:
            return None

        key = idempotency_key(order.id, to_state)
        if not self._claim(key, order, to_state):
            logger.info("ready notification for order %s already fired, skipping", order.id)
            return None

        recipient = self._resolve_recipient(order)
        if not recipient:
            logger.info("no device token for order %s, ready notification skipped", order.id)
            self._record(key, "skipped", "no recipient")
            return NotificationOutcome(order_id=order.id, status="skipped")

        message = build_ready_message(order, recipient)
        try:
            self.notifier.send(message)
        except RecipientUnreachable as exc:
            logger.warning("stale push recipient for order %s, clearing token: %s", order.id, exc)
            self._forget_recipient(order, recipient)
            self._record(key, "stale_recipient", str(exc))
            return NotificationOutcome(
                order_id=order.id,
                status="stale_recipient",
                payload=message.payload(),
                anomaly=Anomaly(kind="stale_recipient", order_id=order.id, detail=str(exc)),
            )
        except DeliveryFailure as exc:
            logger.warning("ready notification for order %s failed: %s", order.id, exc)
            self._record(key, "failed", str(exc))
            return NotificationOutcome(order_id=order.id, status="failed", payload=message.payload())
        except Exception as exc:
            logger.exception("push notifier %s raised for order %s", self.notifier.backend, order.id)
            self._record(key, "failed", str(exc))
            return NotificationOutcome(order_id=order.id, status="failed", payload=message.payload())

        self._record(key, "delivered")
        return NotificationOutcome(order_id=order.id, status="delivered", payload=message.payload())
