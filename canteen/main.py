from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from canteen.api.routes_admin import router as admin_router
from canteen.api.routes_orders import router as orders_router
from canteen.api.routes_payments import router as payments_router
from canteen.api.routes_queue import router as queue_router
from canteen.core.config import get_settings
from canteen.core.errors import (
    AllocationFailed,
    InvalidTransition,
    NotFound,
    OrderingError,
    TransactionConflict,
    ValidationError,
)
from canteen.core.logging import configure_logging
from canteen.persistence.pg import init_db

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title=settings.app_name)

_STATUS_CODES: list[tuple[type[OrderingError], int]] = [
    (ValidationError, 422),
    (NotFound, 404),
    (InvalidTransition, 409),
    (AllocationFailed, 503),
    (TransactionConflict, 409),
]


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    logger.info("canteen order queue ready: batch=%s eta=%s", settings.active_batch_id, settings.eta_strategy)


@app.exception_handler(OrderingError)
async def ordering_error_handler(_: Request, exc: OrderingError):
    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.warning("ordering failure surfaced to client: %s", exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error": exc.error_code,
        },
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(queue_router)
app.include_router(admin_router)
