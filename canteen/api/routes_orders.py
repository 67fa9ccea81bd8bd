from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from canteen.api.utils import get_order_service
from canteen.core.security import Actor, get_actor, require_customer_access, require_roles
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.models import OrderCreateRequest, OrderState
from canteen.payments.gateway import build_gateway

router = APIRouter(tags=["orders"])


class PaymentResultRequest(BaseModel):
    payment_id: str
    authorized: bool


class TransitionRequest(BaseModel):
    to_state: OrderState
    expected_from: OrderState | None = None


@router.post("/orders", status_code=201)
def create_order(
    request: OrderCreateRequest,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"customer", "staff"}, detail="only customers and staff place orders")
    require_customer_access(actor, request.customer_id)
    order = service.create_order(request)
    return order.to_public_dict()


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order(order_id)
    require_customer_access(actor, order.customer_id)
    return order.to_public_dict()


@router.post("/orders/{order_id}/checkout")
def checkout_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.get_order(order_id)
    require_customer_access(actor, order.customer_id)
    result = service.checkout(order_id, build_gateway())
    return result.to_dict()


@router.post("/orders/{order_id}/payment")
def record_payment(
    order_id: str,
    request: PaymentResultRequest,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"system"}, detail="payment results come from the payment system")
    if request.authorized:
        result = service.confirm_payment(order_id, request.payment_id)
    else:
        result = service.fail_payment(order_id, request.payment_id)
    return result.to_dict()


@router.post("/orders/{order_id}/transitions")
def transition_order(
    order_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
):
    require_roles(actor, {"staff"}, detail="only staff advance orders")
    if request.to_state == OrderState.CANCELLED:
        raise HTTPException(status_code=409, detail="cancellation follows payment failure, not staff action")
    result = service.advance(order_id, request.to_state, expected_from=request.expected_from)
    return result.to_dict()
