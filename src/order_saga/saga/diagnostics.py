"""Read-only diagnosis of a single order."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..domain.order import OrderStage, OrderStatus
from ..domain.projection import project
from ..exceptions import NotFoundError, StorageError

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..domain.events import OrderEvent
    from ..domain.order import Order
    from ..ports.event_log import IEventLog
    from ..ports.order_repository import IOrderRepository

logger = logging.getLogger("order_saga.diagnostics")

DEFAULT_STUCK_THRESHOLD = timedelta(seconds=30)

_NEXT_STEP: dict[OrderStage, str] = {
    OrderStage.ORDER: "Inventory reservation should be triggered",
    OrderStage.INVENTORY: "Inventory reservation should complete",
    OrderStage.PAYMENT: "Payment authorization should complete",
    OrderStage.SHIPPING: "Shipment should complete",
}


@dataclass(frozen=True)
class Diagnosis:
    """Derived view of an order's progress; never stored."""

    order_id: str
    status: OrderStatus
    stage: OrderStage
    is_stuck: bool
    time_since_last_event: timedelta
    last_event: OrderEvent | None
    expected_next_step: str | None
    likely_issue: str | None
    recommendation: str
    event_count: int
    projection_consistent: bool | None
    degraded: bool = False


class SagaDiagnostics:
    """Answers "why is this order where it is?" from the log and the order.

    An order is stuck when it is PROCESSING and nothing has been appended
    for longer than ``stuck_threshold``. A failing event-log read does not
    fail the diagnosis: it is reported with ``degraded=True``.
    """

    def __init__(
        self,
        orders: IOrderRepository,
        event_log: IEventLog,
        stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._orders = orders
        self._event_log = event_log
        self._stuck_threshold = stuck_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def diagnose(self, order_id: str) -> Diagnosis:
        order = await self._orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)

        degraded = False
        try:
            events = await self._event_log.read_events(order_id)
        except StorageError as exc:
            logger.warning(
                "Event log unavailable while diagnosing order %s (degraded): %s",
                order_id,
                exc,
            )
            events = []
            degraded = True

        last_event = events[-1] if events else None
        reference = last_event.created_at if last_event else order.updated_at
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        elapsed = max(self._clock() - reference, timedelta(0))
        is_stuck = (
            order.status == OrderStatus.PROCESSING and elapsed > self._stuck_threshold
        )
        likely_issue, recommendation = _explain(order, is_stuck, elapsed)

        return Diagnosis(
            order_id=order.id,
            status=order.status,
            stage=order.stage,
            is_stuck=is_stuck,
            time_since_last_event=elapsed,
            last_event=last_event,
            expected_next_step=_expected_next_step(order),
            likely_issue=likely_issue,
            recommendation=recommendation,
            event_count=len(events),
            projection_consistent=(
                None if degraded else project(events) == (order.status, order.stage)
            ),
            degraded=degraded,
        )


def _expected_next_step(order: Order) -> str | None:
    if order.status == OrderStatus.COMPLETED:
        return None
    if order.status == OrderStatus.FAILED:
        return f"Retry {order.stage.value.lower()} stage"
    return _NEXT_STEP[order.stage]


def _explain(
    order: Order, is_stuck: bool, elapsed: timedelta
) -> tuple[str | None, str]:
    if is_stuck:
        seconds = int(elapsed.total_seconds())
        step = order.stage.value.lower()
        return (
            f"Order has been processing for {seconds} seconds. The {step} "
            "service may have failed or timed out.",
            "Try retrying the order or check the service logs.",
        )
    if order.status == OrderStatus.FAILED:
        return (
            f"Order failed at {order.stage.value.lower()} stage.",
            "Check the dead-letter queue; retry the order or replay its entry.",
        )
    if order.status == OrderStatus.COMPLETED:
        return None, "Order completed; nothing to do."
    return None, "Order appears to be processing normally."
