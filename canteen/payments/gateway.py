from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

from canteen.core.config import Settings, get_settings
from canteen.core.errors import ValidationError
from canteen.domain.orders.models import Order


@dataclass(frozen=True)
class PaymentAuthorization:
    approved: bool
    payment_id: str
    reason: str | None = None


class PaymentGateway(Protocol):
    name: str

    def authorize(self, order: Order) -> PaymentAuthorization:
        ...


class SimulatedPaymentGateway:
    """Stands in for the hosted checkout; approves or declines every charge."""

    name = "simulated"

    def __init__(self, approve: bool = True):
        self.approve = approve

    def authorize(self, order: Order) -> PaymentAuthorization:
        payment_id = f"pay_{uuid4().hex[:14]}"
        if not self.approve:
            return PaymentAuthorization(approved=False, payment_id=payment_id, reason="declined")
        return PaymentAuthorization(approved=True, payment_id=payment_id)


def build_gateway(settings: Settings | None = None) -> PaymentGateway:
    settings = settings or get_settings()
    if settings.payment_gateway != "simulated":
        raise ValidationError(f"unsupported payment gateway: {settings.payment_gateway}")
    return SimulatedPaymentGateway(approve=settings.simulated_payment_approve)
