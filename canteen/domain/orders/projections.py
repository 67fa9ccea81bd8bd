from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from canteen.domain.orders.models import ACTIVE_QUEUE_STATES, Order, OrderState, PaymentState
from canteen.persistence.repository import OrderRepository, Snapshot, Subscription

logger = logging.getLogger(__name__)


def is_live_queue_entry(order: Order) -> bool:
    return (
        order.payment_state == PaymentState.AUTHORIZED
        and order.order_state in ACTIVE_QUEUE_STATES
        and order.queue_number is not None
    )


def queue_sort_key(order: Order) -> int:
    return order.queue_number or 0


def board_sort_key(order: Order) -> tuple[int, int, datetime]:
    # Numbered orders first by ticket, the rest by arrival.
    if order.queue_number is not None:
        return (0, order.queue_number, order.created_at)
    return (1, 0, order.created_at)


def project_live_queue(orders: Iterable[Order], status: OrderState | None = None) -> list[Order]:
    entries = [order for order in orders if is_live_queue_entry(order)]
    if status is not None:
        entries = [order for order in entries if order.order_state == status]
    return sorted(entries, key=queue_sort_key)


def project_customer_orders(orders: Iterable[Order], customer_id: str, active_only: bool = False) -> list[Order]:
    mine = [order for order in orders if order.customer_id == customer_id]
    if active_only:
        return project_live_queue(mine)
    return sorted(mine, key=board_sort_key)


def project_admin_board(orders: Iterable[Order]) -> list[Order]:
    return sorted(orders, key=board_sort_key)


@dataclass(frozen=True)
class QueueView:
    version: int
    entries: tuple[Order, ...]

    @property
    def queue_numbers(self) -> list[int]:
        return [order.queue_number for order in self.entries if order.queue_number is not None]


ViewListener = Callable[[QueueView], None]


class QueueProjection:
    """Keeps a live view derived from the repository's snapshot stream.

    Each snapshot re-runs the pure projection; listeners always receive the
    whole replaced list.
    """

    def __init__(
        self,
        repository: OrderRepository,
        project: Callable[[Iterable[Order]], list[Order]] = project_live_queue,
    ):
        self.repository = repository
        self.project = project
        self._view = QueueView(version=-1, entries=())
        self._listeners: list[ViewListener] = []
        self._subscription: Subscription | None = None
        self._lock = threading.Lock()

    @classmethod
    def for_customer(cls, repository: OrderRepository, customer_id: str, active_only: bool = False) -> "QueueProjection":
        return cls(repository, project=lambda orders: project_customer_orders(orders, customer_id, active_only))

    @classmethod
    def for_status(cls, repository: OrderRepository, status: OrderState) -> "QueueProjection":
        return cls(repository, project=lambda orders: project_live_queue(orders, status=status))

    @property
    def view(self) -> QueueView:
        return self._view

    def add_listener(self, listener: ViewListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def start(self) -> "QueueProjection":
        if self._subscription is None:
            self._subscription = self.repository.subscribe(self._on_snapshot)
        return self

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        view = QueueView(version=snapshot.version, entries=tuple(self.project(snapshot.orders)))
        with self._lock:
            if view.version < self._view.version:
                logger.debug("dropping out-of-order snapshot version=%s", view.version)
                return
            self._view = view
            listeners = list(self._listeners)
        for listener in listeners:
            listener(view)
