from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from canteen.api.utils import get_order_service, parse_day
from canteen.core.security import Actor, get_actor, require_roles
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.projections import project_admin_board
from canteen.domain.orders.reports import daily_summary

router = APIRouter(tags=["admin"])


@router.get("/admin/orders")
def admin_board(
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"staff"}, detail="admin board requires staff role")
    orders = project_admin_board(service.repository.list_orders())
    return {"count": len(orders), "orders": [order.to_public_dict() for order in orders]}


@router.get("/admin/summary")
def admin_summary(
    day: str | None = Query(default=None, description="YYYY-MM-DD, defaults to today (UTC)"),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"staff"}, detail="summary requires staff role")
    try:
        target = parse_day(day)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return daily_summary(service.repository.list_orders(), target)


@router.post("/admin/reap")
def reap_stale_orders(
    older_than_minutes: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"staff", "system"}, detail="reaping requires staff or system role")
    cancelled = service.cancel_stale_orders(older_than_minutes=older_than_minutes)
    return {"cancelled": cancelled, "count": len(cancelled)}
