from __future__ import annotations

from typing import Iterable, Protocol

from canteen.core.config import get_settings
from canteen.core.errors import ValidationError
from canteen.domain.orders.models import BACKLOG_STATES, Order


def orders_ahead(order: Order, orders: Iterable[Order]) -> list[Order]:
    """Backlog in front of ``order``: still queued or preparing and created strictly earlier."""
    return [
        other
        for other in orders
        if other.id != order.id
        and other.order_state in BACKLOG_STATES
        and other.created_at < order.created_at
    ]


class EtaEstimator(Protocol):
    name: str

    def estimate(self, order: Order, active_orders: list[Order], avg_prep_minutes: int) -> int:
        ...


class UniformEtaEstimator:
    """One average slot per order ahead plus one for the order itself."""

    name = "uniform"

    def estimate(self, order: Order, active_orders: list[Order], avg_prep_minutes: int) -> int:
        ahead = len(orders_ahead(order, active_orders))
        return max(ahead * avg_prep_minutes + avg_prep_minutes, avg_prep_minutes)


class PerItemEtaEstimator:
    """Backlog at the average rate; the order's own slot uses its slowest menu item."""

    name = "per_item"

    def estimate(self, order: Order, active_orders: list[Order], avg_prep_minutes: int) -> int:
        ahead = len(orders_ahead(order, active_orders))
        item_times = [item.prep_minutes for item in order.line_items if item.prep_minutes is not None]
        own_slot = max(item_times) if item_times else avg_prep_minutes
        return max(ahead * avg_prep_minutes + own_slot, avg_prep_minutes)


ESTIMATORS: dict[str, type] = {
    UniformEtaEstimator.name: UniformEtaEstimator,
    PerItemEtaEstimator.name: PerItemEtaEstimator,
}


def build_estimator(strategy: str | None = None) -> EtaEstimator:
    name = strategy or get_settings().eta_strategy
    estimator_cls = ESTIMATORS.get(name)
    if estimator_cls is None:
        raise ValidationError(f"unknown eta strategy: {name}")
    return estimator_cls()
