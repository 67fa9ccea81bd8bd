from __future__ import annotations

from datetime import date, datetime, timezone

from canteen.domain.orders.commands import OrderService


def parse_day(value: str | None) -> date:
    if not value:
        return now_utc().date()
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("day must be YYYY-MM-DD") from exc


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_order_service() -> OrderService:
    return OrderService()
