"""OrderEvent — immutable fact appended to the event log."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .order import OrderStage


class EventType(str, Enum):
    """Every fact the saga can record about an order."""

    ORDER_CREATED = "OrderCreated"
    INVENTORY_RESERVED = "InventoryReserved"
    INVENTORY_FAILED = "InventoryFailed"
    PAYMENT_AUTHORIZED = "PaymentAuthorized"
    PAYMENT_FAILED = "PaymentFailed"
    ORDER_SHIPPED = "OrderShipped"
    SHIPPING_FAILED = "ShippingFailed"
    ORDER_FAILED = "OrderFailed"
    COMPENSATION_STARTED = "CompensationStarted"
    INVENTORY_RELEASED = "InventoryReleased"
    PAYMENT_REFUNDED = "PaymentRefunded"
    COMPENSATION_FAILED = "CompensationFailed"
    ORDER_RETRIED = "OrderRetried"


class Producer(str, Enum):
    """Logical service names recorded as ``produced_by``."""

    ORDER = "order-service"
    INVENTORY = "inventory-service"
    PAYMENT = "payment-service"
    SHIPPING = "shipping-service"
    COMPENSATION = "compensation-service"
    RETRY = "retry-service"


STAGE_SUCCESS_EVENT: dict[OrderStage, EventType] = {
    OrderStage.INVENTORY: EventType.INVENTORY_RESERVED,
    OrderStage.PAYMENT: EventType.PAYMENT_AUTHORIZED,
    OrderStage.SHIPPING: EventType.ORDER_SHIPPED,
}

STAGE_FAILURE_EVENT: dict[OrderStage, EventType] = {
    OrderStage.INVENTORY: EventType.INVENTORY_FAILED,
    OrderStage.PAYMENT: EventType.PAYMENT_FAILED,
    OrderStage.SHIPPING: EventType.SHIPPING_FAILED,
}

STAGE_PRODUCER: dict[OrderStage, Producer] = {
    OrderStage.INVENTORY: Producer.INVENTORY,
    OrderStage.PAYMENT: Producer.PAYMENT,
    OrderStage.SHIPPING: Producer.SHIPPING,
}

#: Event types that put an order into FAILED.
FAILURE_EVENTS: frozenset[EventType] = frozenset(
    {*STAGE_FAILURE_EVENT.values(), EventType.ORDER_FAILED}
)


class OrderEvent(BaseModel):
    """Append-only record of something that happened to an order.

    ``position`` is assigned by the event log on append and breaks ties
    between events sharing a ``created_at``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    type: EventType
    correlation_id: str
    causation_id: str | None = None
    schema_version: int = 1
    payload: dict[str, Any] = Field(default_factory=dict)
    produced_by: Producer
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    position: int | None = None

    @property
    def is_failure(self) -> bool:
        return self.type in FAILURE_EVENTS
