from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from canteen.api.utils import get_order_service
from canteen.core.security import Actor, get_actor, require_customer_access
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.models import OrderState
from canteen.domain.orders.projections import project_customer_orders, project_live_queue

router = APIRouter(tags=["queue"])


class DeviceTokenRequest(BaseModel):
    device_token: str | None = None


@router.get("/queue/live")
def live_queue(
    status: OrderState | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    orders = project_live_queue(service.repository.list_orders(), status=status)
    return {
        "count": len(orders),
        "version": service.repository.feed.version,
        "orders": [
            {
                "id": order.id,
                "queue_number": order.queue_number,
                "order_state": order.order_state.value,
                "estimated_minutes": order.estimated_minutes,
                # Board shows tickets, not who ordered; customers still spot their own.
                "mine": actor.type == "customer" and order.customer_id == actor.id,
            }
            for order in orders
        ],
    }


@router.get("/customers/{customer_id}/orders")
def customer_orders(
    customer_id: str,
    active_only: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_customer_access(actor, customer_id)
    orders = project_customer_orders(service.repository.list_orders(), customer_id, active_only=active_only)
    return {
        "customer_id": customer_id,
        "count": len(orders),
        "orders": [order.to_public_dict() for order in orders],
    }


@router.put("/customers/{customer_id}/device-token")
def register_device_token(
    customer_id: str,
    request: DeviceTokenRequest,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_customer_access(actor, customer_id)
    service.register_device_token(customer_id, request.device_token)
    return {"customer_id": customer_id, "registered": request.device_token is not None}
