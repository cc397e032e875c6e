from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import BigInteger, Enum, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ...domain.dead_letter import DeadLetterStatus
from ...domain.order import OrderStage, OrderStatus
from .types import JSONType, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for the saga tables.
    """


class OrderModel(Base):
    """
    Current projection of each order. Rows are never deleted.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    customer_ref: Mapped[str] = mapped_column(String)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSONType)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2, asdecimal=True))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), index=True)
    stage: Mapped[OrderStage] = mapped_column(Enum(OrderStage))
    correlation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


class OrderEventModel(Base):
    """
    Append-only event log.
    ``position`` is assigned by the database and breaks ``created_at`` ties.
    """

    __tablename__ = "order_events"

    position: Mapped[int] = mapped_column(
        Integer().with_variant(BigInteger, "postgresql"),
        primary_key=True,
        autoincrement=True,
    )
    event_id: Mapped[str] = mapped_column(String, unique=True)
    order_id: Mapped[str] = mapped_column(String)
    event_type: Mapped[str] = mapped_column(String, index=True)
    correlation_id: Mapped[str] = mapped_column(String, index=True)
    causation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    schema_version: Mapped[int] = mapped_column(Integer, default=1)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType)
    produced_by: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("ix_order_events_order_created", "order_id", "created_at"),
    )


class DedupKeyModel(Base):
    """
    One row per produced effect; the composite key is the uniqueness
    constraint the atomic reservation relies on.
    """

    __tablename__ = "dedup_keys"

    event_type: Mapped[str] = mapped_column(String, primary_key=True)
    order_id: Mapped[str] = mapped_column(String, primary_key=True)
    correlation_id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)


class DeadLetterModel(Base):
    """
    Dead-letter entries, indexed for the retry sweep.
    """

    __tablename__ = "dead_letters"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    order_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    stage: Mapped[OrderStage] = mapped_column(Enum(OrderStage))
    correlation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, default="")
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    status: Mapped[DeadLetterStatus] = mapped_column(
        Enum(DeadLetterStatus), default=DeadLetterStatus.PENDING
    )
    last_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    replayed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_dead_letters_sweep", "status", "retry_count", "last_retry_at"),
    )
