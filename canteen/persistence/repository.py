from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from canteen.core.errors import NotFound
from canteen.domain.orders.models import Order
from canteen.persistence import pg
from canteen.persistence.legacy import row_to_order
from canteen.persistence.models import OrderModel
from canteen.persistence.transactions import TransactionRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")

OrderPredicate = Callable[[Order], bool]


@dataclass(frozen=True)
class Snapshot:
    """A complete result set; every delivery replaces the previous one."""

    version: int
    orders: tuple[Order, ...]
    taken_at: datetime


SnapshotCallback = Callable[[Snapshot], None]


@dataclass(eq=False)
class Subscription:
    predicate: OrderPredicate
    callback: SnapshotCallback
    feed: "ChangeFeed"
    delivered_version: int = 0
    failures: int = 0
    active: bool = True

    def close(self) -> None:
        self.feed.remove(self)


class ChangeFeed:
    """Fans committed changes out to subscribers as full, versioned snapshots.

    Deliveries happen under one lock so every subscriber observes versions in
    commit order. A callback that raises is logged and simply receives the
    next full snapshot.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def add(self, subscription: Subscription, orders: list[Order]) -> None:
        with self._lock:
            self._subscriptions.append(subscription)
            self._deliver(subscription, self._version, orders)

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, load: Callable[[], list[Order]]) -> int:
        with self._lock:
            self._version += 1
            if not self._subscriptions:
                return self._version
            try:
                orders = load()
            except Exception:
                # Subscribers catch up on the next commit.
                logger.exception("snapshot load failed at version=%s", self._version)
                return self._version
            for subscription in list(self._subscriptions):
                self._deliver(subscription, self._version, orders)
            return self._version

    def _deliver(self, subscription: Subscription, version: int, orders: list[Order]) -> None:
        if not subscription.active:
            return
        snapshot = Snapshot(
            version=version,
            orders=tuple(order for order in orders if subscription.predicate(order)),
            taken_at=datetime.now(timezone.utc),
        )
        try:
            subscription.callback(snapshot)
        except Exception:
            subscription.failures += 1
            logger.exception("snapshot subscriber failed at version=%s", version)
            return
        subscription.delivered_version = version


def _match_all(_: Order) -> bool:
    return True


class OrderRepository:
    def __init__(self, runner: TransactionRunner | None = None, feed: ChangeFeed | None = None):
        self.runner = runner or TransactionRunner()
        self.feed = feed or ChangeFeed()

    def run_transaction(
        self,
        fn: Callable[[Session], T],
        *,
        label: str = "transaction",
        max_retries: int | None = None,
    ) -> T:
        result = self.runner.run(fn, label=label, max_retries=max_retries)
        self.feed.publish(self.list_orders)
        return result

    def get(self, order_id: str) -> Order:
        with pg.session_scope() as session:
            row = session.get(OrderModel, order_id)
            if row is None:
                raise NotFound(order_id)
            return row_to_order(row)

    def list_orders(self, predicate: OrderPredicate | None = None) -> list[Order]:
        with pg.session_scope() as session:
            rows = session.scalars(select(OrderModel).order_by(OrderModel.created_at.asc())).all()
            orders = [row_to_order(row) for row in rows]
        if predicate is None:
            return orders
        return [order for order in orders if predicate(order)]

    def subscribe(self, callback: SnapshotCallback, predicate: OrderPredicate | None = None) -> Subscription:
        subscription = Subscription(predicate=predicate or _match_all, callback=callback, feed=self.feed)
        self.feed.add(subscription, self.list_orders())
        return subscription


def load_row_for_update(session: Session, order_id: str) -> OrderModel:
    stmt = select(OrderModel).where(OrderModel.order_id == order_id)
    if session.get_bind().dialect.name.startswith("postgres"):
        # Version checks still catch races; the row lock only shortens the retry loop.
        stmt = stmt.with_for_update()
    row = session.scalar(stmt)
    if row is None:
        raise NotFound(order_id)
    return row


_default_repository: OrderRepository | None = None
_default_lock = threading.Lock()


def get_repository() -> OrderRepository:
    global _default_repository
    with _default_lock:
        if _default_repository is None:
            _default_repository = OrderRepository()
        return _default_repository


def reset_repository() -> None:
    global _default_repository
    with _default_lock:
        _default_repository = None
