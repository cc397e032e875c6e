"""Versioned payload schemas, one per event type."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import EventSchemaError
from .events import EventType


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OrderCreatedPayload(_Payload):
    customer_ref_hash: str = Field(min_length=1)
    items: list[dict[str, Any]] = Field(min_length=1)
    item_count: int = Field(gt=0)
    total_amount: str


class StageSucceededPayload(_Payload):
    details: dict[str, Any] = Field(default_factory=dict)


class InventoryReservedPayload(StageSucceededPayload):
    reserved: bool = True


class PaymentAuthorizedPayload(StageSucceededPayload):
    authorized: bool = True
    transaction_id: str | None = None


class OrderShippedPayload(StageSucceededPayload):
    shipped: bool = True
    tracking_number: str | None = None


class StageFailedPayload(_Payload):
    reason: str = Field(min_length=1)


class OrderFailedPayload(_Payload):
    reason: str = Field(min_length=1)
    stage: Literal["INVENTORY", "PAYMENT", "SHIPPING"]
    cause: str | None = None


class CompensationStartedPayload(_Payload):
    action: str = Field(min_length=1)
    actions: list[str] = Field(min_length=1)
    failed_stage: Literal["PAYMENT", "SHIPPING"]


class CompensationDonePayload(_Payload):
    action: str
    details: dict[str, Any] = Field(default_factory=dict)


class CompensationFailedPayload(_Payload):
    action: str
    reason: str = Field(min_length=1)
    remaining_actions: list[str] = Field(default_factory=list)


class OrderRetriedPayload(_Payload):
    stage: Literal["INVENTORY", "PAYMENT", "SHIPPING"]
    previous_failure: str
    previous_failure_id: str | None = None
    trigger: Literal["manual", "automatic"]


#: ``(model, schema_version)`` per event type.
EVENT_SCHEMAS: dict[EventType, tuple[type[_Payload], int]] = {
    EventType.ORDER_CREATED: (OrderCreatedPayload, 1),
    EventType.INVENTORY_RESERVED: (InventoryReservedPayload, 1),
    EventType.INVENTORY_FAILED: (StageFailedPayload, 1),
    EventType.PAYMENT_AUTHORIZED: (PaymentAuthorizedPayload, 1),
    EventType.PAYMENT_FAILED: (StageFailedPayload, 1),
    EventType.ORDER_SHIPPED: (OrderShippedPayload, 1),
    EventType.SHIPPING_FAILED: (StageFailedPayload, 1),
    EventType.ORDER_FAILED: (OrderFailedPayload, 1),
    EventType.COMPENSATION_STARTED: (CompensationStartedPayload, 1),
    EventType.INVENTORY_RELEASED: (CompensationDonePayload, 1),
    EventType.PAYMENT_REFUNDED: (CompensationDonePayload, 1),
    EventType.COMPENSATION_FAILED: (CompensationFailedPayload, 1),
    EventType.ORDER_RETRIED: (OrderRetriedPayload, 1),
}


def current_schema_version(event_type: EventType) -> int:
    return EVENT_SCHEMAS[event_type][1]


def validate_payload(
    event_type: EventType | str,
    payload: dict[str, Any],
    schema_version: int = 1,
) -> dict[str, Any]:
    """Validate *payload* against the schema for *event_type*.

    Returns the normalised (JSON-safe) payload.

    Raises:
        EventSchemaError: unknown type, version mismatch or invalid fields.
    """
    try:
        key = EventType(event_type)
    except ValueError:
        raise EventSchemaError(f"Unknown event type: {event_type}") from None

    model, version = EVENT_SCHEMAS[key]
    if schema_version != version:
        raise EventSchemaError(
            f"Version mismatch for {key.value}: expected {version}, "
            f"got {schema_version}"
        )
    try:
        validated = model.model_validate(payload)
    except PydanticValidationError as exc:
        errors: dict[str, list[str]] = {}
        for error in exc.errors():
            loc = ".".join(str(p) for p in error.get("loc", ("__root__",)))
            errors.setdefault(loc, []).append(error.get("msg", "validation error"))
        raise EventSchemaError(errors) from exc
    return validated.model_dump(mode="json")
