"""Legal order lifecycle.

    CREATED -> QUEUED -> PREPARING -> READY -> COMPLETED
       \\          \\
        +----------+--> CANCELLED

Guards compare the stored state against the caller's expected ``from`` state
inside the same transaction that writes the new one, so two staff terminals
clicking "advance" at once commit a single transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from canteen.core.errors import InvalidTransition
from canteen.domain.orders.models import OrderState, PaymentState
from canteen.persistence.models import OrderModel


@dataclass(frozen=True)
class TransitionRule:
    source: OrderState
    target: OrderState
    trigger: str
    # Payment state written together with the order state, if any.
    payment_state: PaymentState | None = None


TRANSITIONS: tuple[TransitionRule, ...] = (
    TransitionRule(OrderState.CREATED, OrderState.QUEUED, "payment_authorized", PaymentState.AUTHORIZED),
    TransitionRule(OrderState.CREATED, OrderState.CANCELLED, "payment_failed", PaymentState.FAILED),
    TransitionRule(OrderState.QUEUED, OrderState.CANCELLED, "payment_failed", PaymentState.FAILED),
    TransitionRule(OrderState.QUEUED, OrderState.PREPARING, "staff"),
    TransitionRule(OrderState.PREPARING, OrderState.READY, "staff"),
    TransitionRule(OrderState.READY, OrderState.COMPLETED, "staff"),
)

_RULES: dict[tuple[OrderState, OrderState], TransitionRule] = {
    (rule.source, rule.target): rule for rule in TRANSITIONS
}

STAFF_TARGETS = frozenset(rule.target for rule in TRANSITIONS if rule.trigger == "staff")


def allowed_targets(current: OrderState) -> set[OrderState]:
    return {rule.target for rule in TRANSITIONS if rule.source == current}


def default_source(target: OrderState) -> OrderState | None:
    sources = [rule.source for rule in TRANSITIONS if rule.target == target]
    if len(sources) == 1:
        return sources[0]
    return None


def check_transition(
    current: OrderState,
    target: OrderState,
    expected_from: OrderState | None = None,
    order_id: str | None = None,
) -> TransitionRule:
    rule = _RULES.get((current, target))
    if rule is None:
        raise InvalidTransition(order_id, current.value, target.value, "transition not allowed")

    if expected_from is None:
        expected_from = default_source(target)
    # CANCELLED has two legal sources, so without an explicit expectation any of them is accepted.
    if expected_from is not None and current != expected_from:
        raise InvalidTransition(
            order_id,
            current.value,
            target.value,
            f"expected current state {expected_from.value}",
        )
    return rule


def apply_transition(
    row: OrderModel,
    current: OrderState,
    target: OrderState,
    now: datetime,
    expected_from: OrderState | None = None,
) -> TransitionRule:
    """Verify the guard and write the new state onto a row loaded in the current transaction."""
    rule = check_transition(current, target, expected_from=expected_from, order_id=row.order_id)
    row.order_state = target.value
    row.legacy_status = None
    if rule.payment_state is not None:
        row.payment_state = rule.payment_state.value
    row.updated_at = now
    return rule
