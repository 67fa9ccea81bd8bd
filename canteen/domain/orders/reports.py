from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable

from canteen.domain.orders.models import Order, OrderState, PaymentState


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def daily_summary(orders: Iterable[Order], day: date, top_items: int = 5) -> dict:
    start, end = _day_bounds(day)
    todays = [order for order in orders if start <= order.created_at < end]
    paid = [order for order in todays if order.payment_state == PaymentState.AUTHORIZED]

    revenue = sum((order.total_amount for order in paid), Decimal("0"))
    average = (revenue / len(paid)).quantize(Decimal("0.01")) if paid else Decimal("0")

    by_state = {state.value: 0 for state in OrderState}
    for order in todays:
        by_state[order.order_state.value] += 1

    popular: Counter[str] = Counter()
    for order in paid:
        for item in order.line_items:
            popular[item.name] += item.quantity

    # Degraded numbers need a human to check for duplicate tickets.
    flagged = [order.id for order in todays if order.queue_number_degraded]

    return {
        "day": day.isoformat(),
        "total_orders": len(todays),
        "paid_orders": len(paid),
        "revenue": str(revenue),
        "average_order_value": str(average),
        "orders_by_state": by_state,
        "popular_items": [{"name": name, "quantity": qty} for name, qty in popular.most_common(top_items)],
        "degraded_queue_numbers": flagged,
    }
