from __future__ import annotations

from datetime import datetime, timezone

import pytest

from canteen.core.errors import InvalidTransition
from canteen.domain.orders.models import OrderState, PaymentState
from canteen.domain.orders.state_machine import (
    STAFF_TARGETS,
    allowed_targets,
    apply_transition,
    check_transition,
    default_source,
)
from canteen.persistence.models import OrderModel


def test_forward_path_is_linear():
    assert allowed_targets(OrderState.CREATED) == {OrderState.QUEUED, OrderState.CANCELLED}
    assert allowed_targets(OrderState.QUEUED) == {OrderState.PREPARING, OrderState.CANCELLED}
    assert allowed_targets(OrderState.PREPARING) == {OrderState.READY}
    assert allowed_targets(OrderState.READY) == {OrderState.COMPLETED}
    assert allowed_targets(OrderState.COMPLETED) == set()
    assert allowed_targets(OrderState.CANCELLED) == set()
    assert STAFF_TARGETS == {OrderState.PREPARING, OrderState.READY, OrderState.COMPLETED}


@pytest.mark.parametrize(
    "current,target",
    [
        (OrderState.PREPARING, OrderState.QUEUED),
        (OrderState.READY, OrderState.PREPARING),
        (OrderState.QUEUED, OrderState.READY),
        (OrderState.CREATED, OrderState.PREPARING),
        (OrderState.COMPLETED, OrderState.READY),
        (OrderState.CANCELLED, OrderState.QUEUED),
        (OrderState.PREPARING, OrderState.CANCELLED),
        (OrderState.READY, OrderState.READY),
    ],
)
def test_illegal_transitions_are_rejected(current, target):
    with pytest.raises(InvalidTransition) as excinfo:
        check_transition(current, target, order_id="ORD-1")
    assert excinfo.value.current == current.value
    assert excinfo.value.target == target.value


def test_expected_from_mismatch_is_rejected():
    with pytest.raises(InvalidTransition):
        check_transition(OrderState.QUEUED, OrderState.CANCELLED, expected_from=OrderState.CREATED)


def test_cancel_accepts_either_source_without_expectation():
    assert default_source(OrderState.CANCELLED) is None
    assert default_source(OrderState.READY) == OrderState.PREPARING
    check_transition(OrderState.CREATED, OrderState.CANCELLED)
    check_transition(OrderState.QUEUED, OrderState.CANCELLED)


def test_apply_transition_writes_payment_state_and_clears_legacy_status():
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    row = OrderModel(
        order_id="ORD-legacy",
        customer_id="alice",
        payment_state=PaymentState.PENDING.value,
        order_state=None,
        legacy_status="placed",
    )

    rule = apply_transition(row, OrderState.CREATED, OrderState.QUEUED, now)

    assert rule.trigger == "payment_authorized"
    assert row.order_state == OrderState.QUEUED.value
    assert row.payment_state == PaymentState.AUTHORIZED.value
    assert row.legacy_status is None
    assert row.updated_at == now


def test_rejected_transition_leaves_row_untouched():
    row = OrderModel(order_id="ORD-2", customer_id="bob", payment_state="AUTHORIZED", order_state="PREPARING")

    with pytest.raises(InvalidTransition):
        apply_transition(row, OrderState.PREPARING, OrderState.QUEUED, datetime.now(timezone.utc))

    assert row.order_state == "PREPARING"
    assert row.updated_at is None
