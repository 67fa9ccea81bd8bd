from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import threading

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import canteen.persistence.pg as pg
from canteen.core.config import get_settings
from canteen.delivery.push import DeliveryReceipt, PushMessage
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.notifications import NotificationTrigger
from canteen.persistence.models import Base
from canteen.persistence.repository import OrderRepository, reset_repository
from canteen.persistence.transactions import TransactionRunner


class RecordingNotifier:
    backend = "recording"

    def __init__(self):
        self.sent: list[PushMessage] = []
        self.error: Exception | None = None
        self._lock = threading.Lock()

    def send(self, message: PushMessage) -> DeliveryReceipt:
        if self.error is not None:
            raise self.error
        with self._lock:
            self.sent.append(message)
        return DeliveryReceipt(backend=self.backend, message_id=f"msg-{len(self.sent)}")


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    settings = get_settings()
    settings.notifier_backend = "log"
    settings.payment_gateway = "simulated"

    engine = create_engine(
        f"sqlite+pysqlite:///{test_db_path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    pg.engine = engine
    pg.SessionLocal = TestSessionLocal

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(configure_test_engine):
    settings = get_settings()
    saved = settings.model_dump()
    with pg.engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    reset_repository()
    yield
    for key, value in saved.items():
        setattr(settings, key, value)
    reset_repository()


@pytest.fixture()
def client(configure_test_engine):
    from canteen.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def auth_headers():
    settings = get_settings()
    return {
        "alice": {"X-API-Key": settings.customer_api_key, "X-Customer-Id": "alice"},
        "bob": {"X-API-Key": settings.customer_api_key, "X-Customer-Id": "bob"},
        "staff": {"X-API-Key": settings.staff_api_key},
        "system": {"X-API-Key": settings.system_api_key},
    }


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def repository() -> OrderRepository:
    return OrderRepository(runner=TransactionRunner(max_retries=50, backoff_ms=5))


@pytest.fixture()
def service(repository, notifier) -> OrderService:
    return OrderService(repository=repository, trigger=NotificationTrigger(notifier=notifier))


@pytest.fixture()
def base_time() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0) - timedelta(minutes=10)


def order_payload(customer_id: str = "alice", device_token: str | None = None, **overrides) -> dict:
    payload = {
        "customer_id": customer_id,
        "line_items": [
            {"name": "Noodles", "unit_price": "40", "quantity": 2, "prep_minutes": 6},
            {"name": "Curry", "unit_price": "60", "quantity": 1, "prep_minutes": 9},
        ],
        "total_amount": "140",
        "device_token": device_token,
    }
    payload.update(overrides)
    return payload


def single_item_payload(customer_id: str = "alice", price: str = "25", device_token: str | None = None) -> dict:
    return {
        "customer_id": customer_id,
        "line_items": [{"name": "Tea", "unit_price": price, "quantity": 1}],
        "total_amount": str(Decimal(price)),
        "device_token": device_token,
    }
