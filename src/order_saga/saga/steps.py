"""Step table: saga stages and their compensating actions."""

from __future__ import annotations

from dataclasses import dataclass

from ..domain.events import (
    STAGE_FAILURE_EVENT,
    STAGE_PRODUCER,
    STAGE_SUCCESS_EVENT,
    EventType,
    Producer,
)
from ..domain.order import OrderStage

INVENTORY = "inventory"
PAYMENT = "payment"
SHIPPING = "shipping"
RELEASE_INVENTORY = "release_inventory"
REFUND_PAYMENT = "refund_payment"


@dataclass(frozen=True)
class StageStep:
    """A forward step of the saga."""

    stage: OrderStage
    name: str
    success_event: EventType
    failure_event: EventType
    producer: Producer


@dataclass(frozen=True)
class CompensationStep:
    """Undo of a previously committed stage."""

    name: str
    undoes: OrderStage
    done_event: EventType


STAGE_STEPS: dict[OrderStage, StageStep] = {
    stage: StageStep(
        stage=stage,
        name=stage.value.lower(),
        success_event=STAGE_SUCCESS_EVENT[stage],
        failure_event=STAGE_FAILURE_EVENT[stage],
        producer=STAGE_PRODUCER[stage],
    )
    for stage in (OrderStage.INVENTORY, OrderStage.PAYMENT, OrderStage.SHIPPING)
}

COMPENSATION_STEPS: dict[str, CompensationStep] = {
    RELEASE_INVENTORY: CompensationStep(
        RELEASE_INVENTORY, OrderStage.INVENTORY, EventType.INVENTORY_RELEASED
    ),
    REFUND_PAYMENT: CompensationStep(
        REFUND_PAYMENT, OrderStage.PAYMENT, EventType.PAYMENT_REFUNDED
    ),
}

# Stages whose effects must be undone, most recent first.
_COMMITTED_BEFORE: dict[OrderStage, tuple[OrderStage, ...]] = {
    OrderStage.INVENTORY: (),
    OrderStage.PAYMENT: (OrderStage.INVENTORY,),
    OrderStage.SHIPPING: (OrderStage.PAYMENT, OrderStage.INVENTORY),
}

_UNDO_BY_STAGE: dict[OrderStage, str] = {
    step.undoes: name for name, step in COMPENSATION_STEPS.items()
}


def compensations_for(failed_stage: OrderStage) -> list[str]:
    """Compensating actions for a domain failure at *failed_stage* (LIFO)."""
    return [_UNDO_BY_STAGE[stage] for stage in _COMMITTED_BEFORE[failed_stage]]
