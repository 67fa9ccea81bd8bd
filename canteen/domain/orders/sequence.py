from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from canteen.domain.orders.models import ACTIVE_QUEUE_STATES
from canteen.persistence.models import OrderModel, QueueCounterModel

logger = logging.getLogger(__name__)


class SequenceAllocator:
    """Issues queue numbers from the per-batch counter.

    Must be called with the session of the transaction that also writes the
    number onto the order: a rollback takes the increment with it, and a
    concurrent increment surfaces as a version conflict for the runner to retry.
    """

    def allocate_next(self, session: Session, batch_id: str) -> int:
        now = datetime.now(timezone.utc)
        counter = session.get(QueueCounterModel, batch_id)
        if counter is None:
            counter = QueueCounterModel(batch_id=batch_id, sequence_value=0, updated_at=now)
            session.add(counter)
        next_value = (counter.sequence_value or 0) + 1
        counter.sequence_value = next_value
        counter.updated_at = now
        session.flush()
        return next_value

    def current(self, session: Session, batch_id: str) -> int:
        counter = session.get(QueueCounterModel, batch_id)
        return counter.sequence_value if counter is not None else 0


class DegradedSequenceAllocator:
    """Count-based estimate used only after the counter path gave up.

    Two callers can receive the same number here; every use is logged and the
    order is flagged for operator review.
    """

    def estimate_next(self, session: Session, batch_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(OrderModel)
            .where(OrderModel.batch_id == batch_id)
            .where(OrderModel.order_state.in_([state.value for state in ACTIVE_QUEUE_STATES]))
        )
        active = session.scalar(stmt) or 0
        estimate = active + 1
        logger.warning(
            "degraded queue number allocation for batch=%s: estimated %s from %s active orders",
            batch_id,
            estimate,
            active,
        )
        return estimate
