"""Domain model: orders, events, dead letters."""

from .dead_letter import (
    COMPENSATION_FAILED,
    DeadLetterEntry,
    DeadLetterStatus,
)
from .events import (
    STAGE_FAILURE_EVENT,
    STAGE_PRODUCER,
    STAGE_SUCCESS_EVENT,
    EventType,
    OrderEvent,
    Producer,
)
from .order import (
    WORK_STAGES,
    Order,
    OrderItem,
    OrderStage,
    OrderStatus,
    next_stage,
)
from .payloads import validate_payload
from .projection import project

__all__ = [
    "COMPENSATION_FAILED",
    "STAGE_FAILURE_EVENT",
    "STAGE_PRODUCER",
    "STAGE_SUCCESS_EVENT",
    "WORK_STAGES",
    "DeadLetterEntry",
    "DeadLetterStatus",
    "EventType",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderStage",
    "OrderStatus",
    "Producer",
    "next_stage",
    "project",
    "validate_payload",
]
