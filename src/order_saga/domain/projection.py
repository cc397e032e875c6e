"""Rebuild an order's ``(status, stage)`` from its event log."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .events import STAGE_FAILURE_EVENT, EventType
from .order import OrderStage, OrderStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .events import OrderEvent

_SUCCESS_TRANSITIONS: dict[EventType, tuple[OrderStatus, OrderStage]] = {
    EventType.ORDER_CREATED: (OrderStatus.PROCESSING, OrderStage.INVENTORY),
    EventType.INVENTORY_RESERVED: (OrderStatus.PROCESSING, OrderStage.PAYMENT),
    EventType.PAYMENT_AUTHORIZED: (OrderStatus.PROCESSING, OrderStage.SHIPPING),
    EventType.ORDER_SHIPPED: (OrderStatus.COMPLETED, OrderStage.COMPLETED),
}

_FAILED_AT: dict[EventType, OrderStage] = {
    event_type: stage for stage, event_type in STAGE_FAILURE_EVENT.items()
}


def apply(
    state: tuple[OrderStatus, OrderStage], event: OrderEvent
) -> tuple[OrderStatus, OrderStage]:
    """Fold one event into ``(status, stage)``.

    Compensation events are audit-only and leave the pair unchanged.
    """
    if event.type in _SUCCESS_TRANSITIONS:
        return _SUCCESS_TRANSITIONS[event.type]
    if event.type in _FAILED_AT:
        return OrderStatus.FAILED, _FAILED_AT[event.type]
    if event.type == EventType.ORDER_FAILED:
        return OrderStatus.FAILED, OrderStage(event.payload["stage"])
    if event.type == EventType.ORDER_RETRIED:
        return OrderStatus.PROCESSING, OrderStage(event.payload["stage"])
    return state


def project(events: Iterable[OrderEvent]) -> tuple[OrderStatus, OrderStage]:
    """Replay an ordered event log; an empty log is ``(PENDING, ORDER)``."""
    state = (OrderStatus.PENDING, OrderStage.ORDER)
    for event in events:
        state = apply(state, event)
    return state
