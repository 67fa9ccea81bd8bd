from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON


def _json_type():
    return JSON().with_variant(JSONB(astext_type=Text()), "postgresql")


class Base(DeclarativeBase):
    pass


class OrderModel(Base):
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    line_items: Mapped[list] = mapped_column(_json_type(), default=list, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_state: Mapped[str] = mapped_column(String(16), default="PENDING", nullable=False)
    # NULL only on rows written by clients that still use the legacy status field.
    order_state: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    legacy_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    queue_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    queue_number_degraded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    estimated_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    device_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class QueueCounterModel(Base):
    __tablename__ = "queue_counters"

    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CustomerModel(Base):
    __tablename__ = "customers"

    customer_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    device_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NotificationReceiptModel(Base):
    __tablename__ = "notification_receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_state: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="claimed", nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


Index("ix_orders_customer_id", OrderModel.customer_id)
Index("ix_orders_order_state", OrderModel.order_state)
Index("ix_orders_created_at", OrderModel.created_at)
Index("ix_orders_batch_queue_number", OrderModel.batch_id, OrderModel.queue_number)
Index("ix_notification_receipts_order_id", NotificationReceiptModel.order_id)
