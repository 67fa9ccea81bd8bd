from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from canteen.api.utils import get_order_service
from canteen.core.security import Actor, get_actor, require_roles
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.models import PaymentCallback

router = APIRouter(tags=["payments"])


@router.post("/payments/webhook")
def payment_webhook(
    callback: PaymentCallback,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"system"}, detail="webhook requires the payment system key")
    if not callback.order_id or not callback.payment_id:
        raise HTTPException(status_code=400, detail="Missing required fields")

    result = service.handle_payment_callback(callback)
    return {
        "order_id": result.order.id,
        "payment_state": result.order.payment_state.value,
        "order_state": result.order.order_state.value,
        "queue_number": result.order.queue_number,
        "replayed": result.replayed,
        "anomalies": [item.to_dict() for item in result.anomalies],
    }
