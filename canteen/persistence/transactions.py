from __future__ import annotations

import logging
import random
import time
from contextlib import AbstractContextManager
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from canteen.core.config import get_settings
from canteen.core.errors import AllocationFailed, TransactionConflict
from canteen.persistence import pg

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AbstractContextManager[Session]]

_LOCK_MARKERS = ("database is locked", "could not serialize", "deadlock detected")
_UNIQUE_MARKERS = ("unique constraint", "duplicate key")


def _message(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc).lower()


def is_conflict(exc: BaseException) -> bool:
    if isinstance(exc, (TransactionConflict, StaleDataError)):
        return True
    if isinstance(exc, IntegrityError):
        # Only duplicate counter or receipt keys come from concurrent writers.
        return any(marker in _message(exc) for marker in _UNIQUE_MARKERS)
    if isinstance(exc, OperationalError):
        return any(marker in _message(exc) for marker in _LOCK_MARKERS)
    return False


class TransactionRunner:
    """Runs a unit of work with all-or-nothing commit and bounded optimistic retry."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        max_retries: int | None = None,
        backoff_ms: int | None = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.max_retries = settings.transaction_max_retries if max_retries is None else max_retries
        self.backoff_ms = settings.transaction_retry_backoff_ms if backoff_ms is None else backoff_ms

    def _open(self) -> AbstractContextManager[Session]:
        if self._session_factory is not None:
            return self._session_factory()
        return pg.session_scope()

    def _sleep(self, attempt: int) -> None:
        if self.backoff_ms <= 0:
            return
        ceiling = self.backoff_ms * (2 ** min(attempt - 1, 5))
        time.sleep(random.uniform(0, ceiling) / 1000)

    def run(self, fn: Callable[[Session], T], *, label: str = "transaction", max_retries: int | None = None) -> T:
        attempts = (self.max_retries if max_retries is None else max_retries) + 1
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                with self._open() as session:
                    result = fn(session)
                    session.flush()
                return result
            except Exception as exc:
                if not is_conflict(exc):
                    raise
                last_error = exc
                logger.debug("%s conflict on attempt %s/%s: %s", label, attempt, attempts, exc)
                if attempt < attempts:
                    self._sleep(attempt)

        raise AllocationFailed(
            f"{label} still conflicting after {attempts} attempt(s): {last_error}",
            attempts=attempts,
        ) from last_error
