from __future__ import annotations


class OrderingError(Exception):
    """Base class for failures the ordering core reports to its callers."""

    error_code = "ordering_error"


class ValidationError(OrderingError, ValueError):
    error_code = "validation_error"


class NotFound(OrderingError, LookupError):
    error_code = "not_found"

    def __init__(self, order_id: str):
        super().__init__(f"order not found: {order_id}")
        self.order_id = order_id


class InvalidTransition(OrderingError):
    error_code = "invalid_transition"

    def __init__(self, order_id: str | None, current: str, target: str, reason: str | None = None):
        message = f"cannot move order {order_id or '?'} from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.order_id = order_id
        self.current = current
        self.target = target


class TransactionConflict(OrderingError):
    """A concurrent writer won; the transaction may be retried."""

    error_code = "transaction_conflict"


class AllocationConflict(TransactionConflict):
    error_code = "allocation_conflict"


class AllocationFailed(TransactionConflict):
    """Conflicts persisted past the retry bound."""

    error_code = "allocation_failed"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DeliveryFailure(OrderingError):
    error_code = "delivery_failure"


class RecipientUnreachable(DeliveryFailure):
    """The push recipient reference is stale or was never registered."""

    error_code = "recipient_unreachable"
