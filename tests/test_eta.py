from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from canteen.core.errors import ValidationError
from canteen.domain.orders.eta import (
    PerItemEtaEstimator,
    UniformEtaEstimator,
    build_estimator,
    orders_ahead,
)
from canteen.domain.orders.models import LineItem, Order, OrderState, PaymentState

BASE = datetime(2026, 3, 2, 11, 30, tzinfo=timezone.utc)


def _order(order_id: str, state: OrderState, minute: int, prep_minutes: list[int] | None = None) -> Order:
    items = [
        LineItem(name=f"item-{i}", unit_price=Decimal("10"), quantity=1, prep_minutes=prep)
        for i, prep in enumerate(prep_minutes or [None])
    ]
    return Order(
        id=order_id,
        customer_id="alice",
        line_items=items,
        total_amount=Decimal("10") * len(items),
        payment_state=PaymentState.AUTHORIZED,
        order_state=state,
        created_at=BASE + timedelta(minutes=minute),
        updated_at=BASE + timedelta(minutes=minute),
    )


def test_empty_backlog_still_costs_one_slot():
    order = _order("A", OrderState.QUEUED, 0)
    assert UniformEtaEstimator().estimate(order, [], 4) == 4


def test_three_orders_ahead_at_four_minutes_is_sixteen():
    order = _order("A", OrderState.QUEUED, 10)
    backlog = [
        _order("B1", OrderState.QUEUED, 1),
        _order("B2", OrderState.PREPARING, 2),
        _order("B3", OrderState.QUEUED, 3),
    ]
    assert UniformEtaEstimator().estimate(order, backlog, 4) == 16


def test_only_earlier_backlog_counts():
    order = _order("A", OrderState.QUEUED, 10)
    others = [
        order,
        _order("ready", OrderState.READY, 1),
        _order("done", OrderState.COMPLETED, 2),
        _order("cancelled", OrderState.CANCELLED, 3),
        _order("unpaid", OrderState.CREATED, 4),
        _order("later", OrderState.QUEUED, 11),
        _order("same-time", OrderState.QUEUED, 10),
        _order("ahead", OrderState.PREPARING, 5),
    ]

    assert [item.id for item in orders_ahead(order, others)] == ["ahead"]
    assert UniformEtaEstimator().estimate(order, others, 5) == 10


def test_estimate_never_below_average():
    order = _order("A", OrderState.QUEUED, 30)
    backlog: list[Order] = []
    for minute in range(30):
        assert UniformEtaEstimator().estimate(order, backlog, 3) >= 3
        backlog.append(_order(f"B{minute}", OrderState.QUEUED, minute))
    assert UniformEtaEstimator().estimate(order, backlog, 3) == 93


def test_per_item_uses_slowest_item_for_own_slot():
    order = _order("A", OrderState.QUEUED, 10, prep_minutes=[2, 9, 5])
    backlog = [_order("B1", OrderState.QUEUED, 1), _order("B2", OrderState.QUEUED, 2)]
    assert PerItemEtaEstimator().estimate(order, backlog, 4) == 17


def test_per_item_is_floored_at_average():
    quick = _order("A", OrderState.QUEUED, 10, prep_minutes=[1])
    assert PerItemEtaEstimator().estimate(quick, [], 4) == 4

    unknown = _order("B", OrderState.QUEUED, 10)
    assert PerItemEtaEstimator().estimate(unknown, [], 4) == 4


def test_build_estimator_by_name():
    assert build_estimator("uniform").name == "uniform"
    assert build_estimator("per_item").name == "per_item"
    with pytest.raises(ValidationError):
        build_estimator("crystal_ball")
