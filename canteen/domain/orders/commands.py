from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from canteen.core.config import Settings, get_settings
from canteen.core.errors import AllocationFailed, InvalidTransition, ValidationError
from canteen.domain.orders.eta import EtaEstimator, build_estimator
from canteen.domain.orders.models import (
    BACKLOG_STATES,
    Order,
    OrderCreateRequest,
    OrderState,
    PaymentCallback,
    PaymentState,
    compute_total,
)
from canteen.domain.orders.notifications import Anomaly, NotificationOutcome, NotificationTrigger
from canteen.domain.orders.sequence import DegradedSequenceAllocator, SequenceAllocator
from canteen.domain.orders.state_machine import STAFF_TARGETS, apply_transition
from canteen.payments.gateway import PaymentGateway
from canteen.persistence.legacy import migrate_row, row_state, row_to_order
from canteen.persistence.models import CustomerModel, OrderModel
from canteen.persistence.repository import OrderRepository, get_repository, load_row_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    from_state: OrderState
    to_state: OrderState
    anomalies: tuple[Anomaly, ...] = ()
    notification: NotificationOutcome | None = None
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order.to_public_dict(),
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "anomalies": [item.to_dict() for item in self.anomalies],
            "notification": self.notification.status if self.notification else None,
            "replayed": self.replayed,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return f"ORD-{uuid4().hex[:12]}"


class OrderService:
    def __init__(
        self,
        repository: OrderRepository | None = None,
        allocator: SequenceAllocator | None = None,
        degraded_allocator: DegradedSequenceAllocator | None = None,
        estimator: EtaEstimator | None = None,
        trigger: NotificationTrigger | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository or get_repository()
        self.allocator = allocator or SequenceAllocator()
        self.degraded_allocator = degraded_allocator or DegradedSequenceAllocator()
        self.estimator = estimator or build_estimator(self.settings.eta_strategy)
        self._trigger = trigger

    @property
    def trigger(self) -> NotificationTrigger:
        if self._trigger is None:
            self._trigger = NotificationTrigger()
        return self._trigger

    # -- reads ---------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        return self.repository.get(order_id)

    # -- creation ------------------------------------------------------------

    def create_order(self, request: OrderCreateRequest | dict[str, Any], now: datetime | None = None) -> Order:
        if not isinstance(request, OrderCreateRequest):
            try:
                request = OrderCreateRequest.model_validate(request)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc

        created_at = now or _now()
        total = compute_total(request.line_items)

        def _create(session: Session) -> Order:
            row = OrderModel(
                order_id=new_order_id(),
                customer_id=request.customer_id,
                line_items=[item.model_dump(mode="json") for item in request.line_items],
                total_amount=total,
                payment_state=PaymentState.PENDING.value,
                order_state=OrderState.CREATED.value,
                device_token=request.device_token,
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(row)
            session.flush()
            return row_to_order(row)

        order = self.repository.run_transaction(_create, label="create_order")
        logger.info("order %s created for customer %s total=%s", order.id, order.customer_id, order.total_amount)
        return order

    # -- payment -------------------------------------------------------------

    def _backlog(self, session: Session, row: OrderModel) -> list[Order]:
        stmt = (
            select(OrderModel)
            .where(OrderModel.order_id != row.order_id)
            .where(OrderModel.created_at < row.created_at)
            .where(
                or_(
                    OrderModel.order_state.in_([state.value for state in BACKLOG_STATES]),
                    OrderModel.order_state.is_(None),
                )
            )
        )
        return [row_to_order(other) for other in session.scalars(stmt).all()]

    def _queue_row(self, session: Session, order_id: str, payment_id: str, degraded: bool) -> TransitionResult:
        row = load_row_for_update(session, order_id)
        migrate_row(row)
        current = row_state(row)

        if row.payment_id == payment_id and row.payment_state == PaymentState.AUTHORIZED.value:
            return TransitionResult(order=row_to_order(row), from_state=current, to_state=current, replayed=True)
        if row.queue_number is not None:
            raise InvalidTransition(order_id, current.value, OrderState.QUEUED.value, "queue number already assigned")

        now = _now()
        apply_transition(row, current, OrderState.QUEUED, now, expected_from=OrderState.CREATED)
        batch_id = self.settings.active_batch_id
        row.payment_id = payment_id
        row.batch_id = batch_id
        if degraded:
            row.queue_number = self.degraded_allocator.estimate_next(session, batch_id)
            row.queue_number_degraded = True
        else:
            row.queue_number = self.allocator.allocate_next(session, batch_id)

        backlog = self._backlog(session, row)
        row.estimated_minutes = self.estimator.estimate(row_to_order(row), backlog, self.settings.avg_prep_minutes)
        session.flush()

        anomalies: tuple[Anomaly, ...] = ()
        if degraded:
            anomalies = (
                Anomaly(
                    kind="degraded_queue_number",
                    order_id=order_id,
                    detail=f"queue number {row.queue_number} estimated without the batch counter; review for duplicates",
                ),
            )
        return TransitionResult(
            order=row_to_order(row),
            from_state=current,
            to_state=OrderState.QUEUED,
            anomalies=anomalies,
        )

    def confirm_payment(self, order_id: str, payment_id: str) -> TransitionResult:
        """Payment authorized: assign queue number and ETA in one transaction."""
        try:
            result = self.repository.run_transaction(
                lambda session: self._queue_row(session, order_id, payment_id, degraded=False),
                label="queue_order",
            )
        except AllocationFailed as exc:
            if not self.settings.degraded_allocator_enabled:
                raise
            logger.warning(
                "queue allocation for order %s failed after %s attempt(s), using degraded allocator",
                order_id,
                exc.attempts,
            )
            result = self.repository.run_transaction(
                lambda session: self._queue_row(session, order_id, payment_id, degraded=True),
                label="queue_order_degraded",
                max_retries=0,
            )

        if not result.replayed:
            logger.info(
                "order %s queued as #%s eta=%smin",
                order_id,
                result.order.queue_number,
                result.order.estimated_minutes,
            )
        return result

    def fail_payment(
        self,
        order_id: str,
        payment_id: str | None = None,
        reason: str = "payment_failed",
        expected_from: OrderState | None = None,
    ) -> TransitionResult:
        def _cancel(session: Session) -> TransitionResult:
            row = load_row_for_update(session, order_id)
            migrate_row(row)
            current = row_state(row)
            if payment_id and row.payment_id == payment_id and current == OrderState.CANCELLED:
                return TransitionResult(order=row_to_order(row), from_state=current, to_state=current, replayed=True)

            apply_transition(row, current, OrderState.CANCELLED, _now(), expected_from=expected_from)
            row.cancel_reason = reason
            if payment_id:
                row.payment_id = payment_id
            session.flush()
            return TransitionResult(order=row_to_order(row), from_state=current, to_state=OrderState.CANCELLED)

        result = self.repository.run_transaction(_cancel, label="cancel_order")
        if not result.replayed:
            logger.info("order %s cancelled from %s: %s", order_id, result.from_state.value, reason)
        return result

    def handle_payment_callback(self, callback: PaymentCallback | dict[str, Any]) -> TransitionResult:
        if not isinstance(callback, PaymentCallback):
            callback = PaymentCallback.model_validate(callback)
        if not callback.order_id or not callback.payment_id:
            raise ValidationError("Missing required fields: orderId and paymentId")
        if callback.authorized:
            return self.confirm_payment(callback.order_id, callback.payment_id)
        return self.fail_payment(callback.order_id, callback.payment_id, reason="payment_failed")

    def checkout(self, order_id: str, gateway: PaymentGateway) -> TransitionResult:
        order = self.repository.get(order_id)
        if order.order_state != OrderState.CREATED:
            raise InvalidTransition(order_id, order.order_state.value, OrderState.QUEUED.value, "order already checked out")
        authorization = gateway.authorize(order)
        if authorization.approved:
            return self.confirm_payment(order_id, authorization.payment_id)
        return self.fail_payment(order_id, authorization.payment_id, reason=authorization.reason or "payment_failed")

    # -- staff ---------------------------------------------------------------

    def advance(self, order_id: str, to_state: OrderState, expected_from: OrderState | None = None) -> TransitionResult:
        if to_state not in STAFF_TARGETS:
            order = self.repository.get(order_id)
            raise InvalidTransition(order_id, order.order_state.value, to_state.value, "not a staff transition")

        def _advance(session: Session) -> tuple[OrderState, Order]:
            row = load_row_for_update(session, order_id)
            migrate_row(row)
            current = row_state(row)
            apply_transition(row, current, to_state, _now(), expected_from=expected_from)
            session.flush()
            return current, row_to_order(row)

        from_state, order = self.repository.run_transaction(_advance, label=f"advance_to_{to_state.value.lower()}")
        logger.info("order %s moved %s -> %s", order_id, from_state.value, to_state.value)

        notification = self.trigger.on_transition(order, from_state, to_state)
        anomalies: tuple[Anomaly, ...] = ()
        if notification is not None and notification.anomaly is not None:
            anomalies = (notification.anomaly,)
        return TransitionResult(
            order=order,
            from_state=from_state,
            to_state=to_state,
            anomalies=anomalies,
            notification=notification,
        )

    # -- maintenance ---------------------------------------------------------

    def cancel_stale_orders(self, older_than_minutes: int | None = None, now: datetime | None = None) -> list[str]:
        """Cancel orders that never got past CREATED; run by an operator, never on a timer."""
        ttl = older_than_minutes or self.settings.stale_order_ttl_minutes
        cutoff = (now or _now()) - timedelta(minutes=ttl)
        stale = self.repository.list_orders(
            lambda order: order.order_state == OrderState.CREATED and order.created_at < cutoff
        )

        cancelled: list[str] = []
        for order in stale:
            try:
                self.fail_payment(order.id, reason="expired", expected_from=OrderState.CREATED)
            except InvalidTransition:
                # Paid or cancelled since the scan.
                continue
            cancelled.append(order.id)

        if cancelled:
            logger.info("cancelled %s stale order(s) older than %s minutes", len(cancelled), ttl)
        return cancelled

    def register_device_token(self, customer_id: str, device_token: str | None) -> None:
        def _upsert(session: Session) -> None:
            customer = session.get(CustomerModel, customer_id)
            now = _now()
            if customer is None:
                session.add(CustomerModel(customer_id=customer_id, device_token=device_token, updated_at=now))
            else:
                customer.device_token = device_token
                customer.updated_at = now
            session.flush()

        self.repository.runner.run(_upsert, label="register_device_token")
