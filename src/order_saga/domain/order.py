"""Order — aggregate root of the saga."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import InvariantViolationError


class OrderStatus(str, Enum):
    """Lifecycle states for an order."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class OrderStage(str, Enum):
    """Stage currently executing or last attempted."""

    ORDER = "ORDER"
    INVENTORY = "INVENTORY"
    PAYMENT = "PAYMENT"
    SHIPPING = "SHIPPING"
    COMPLETED = "COMPLETED"


#: Stages that can fail (and be retried).
WORK_STAGES: tuple[OrderStage, ...] = (
    OrderStage.INVENTORY,
    OrderStage.PAYMENT,
    OrderStage.SHIPPING,
)

_NEXT_STAGE: dict[OrderStage, OrderStage] = {
    OrderStage.ORDER: OrderStage.INVENTORY,
    OrderStage.INVENTORY: OrderStage.PAYMENT,
    OrderStage.PAYMENT: OrderStage.SHIPPING,
    OrderStage.SHIPPING: OrderStage.COMPLETED,
}


def next_stage(stage: OrderStage) -> OrderStage:
    """Return the stage that follows *stage* on the success path."""
    try:
        return _NEXT_STAGE[stage]
    except KeyError:
        raise InvariantViolationError(f"No stage follows {stage.value}") from None


class OrderItem(BaseModel):
    """One line of an order."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1)
    product_name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0, decimal_places=2)

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """Aggregate root tracking one order through the saga.

    Status transitions::

        PENDING/ORDER          → PROCESSING/INVENTORY (start)
        PROCESSING/<stage>     → PROCESSING/<next>    (advance_to)
        PROCESSING/SHIPPING    → COMPLETED/COMPLETED  (complete)
        PROCESSING/<stage>     → FAILED/<stage>       (fail_at)
        FAILED/<stage>         → PROCESSING/<stage>   (begin_retry)

    Orders are never deleted.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    customer_ref: str
    items: list[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0.00")
    status: OrderStatus = OrderStatus.PENDING
    stage: OrderStage = OrderStage.ORDER
    correlation_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("total_amount")
    @classmethod
    def _two_places(cls, value: Decimal) -> Decimal:
        return value.quantize(Decimal("0.01"))

    # -- factory ----------------------------------------------------------

    @classmethod
    def create(
        cls,
        order_id: str,
        customer_ref: str,
        items: list[OrderItem],
        correlation_id: str,
    ) -> Order:
        """Build a PENDING order; the total is derived from its items."""
        total = sum((item.subtotal for item in items), Decimal("0"))
        return cls(
            id=order_id,
            customer_ref=customer_ref,
            items=list(items),
            total_amount=total,
            correlation_id=correlation_id,
        )

    # -- helpers ----------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at``."""
        self.updated_at = datetime.now(timezone.utc)

    @property
    def is_terminal(self) -> bool:
        return self.status == OrderStatus.COMPLETED

    # -- transitions ------------------------------------------------------

    def start(self) -> None:
        """PENDING/ORDER → PROCESSING/INVENTORY."""
        if self.status != OrderStatus.PENDING or self.stage != OrderStage.ORDER:
            raise InvariantViolationError(
                f"Cannot start order in {self.status.value}/{self.stage.value}"
            )
        self.status = OrderStatus.PROCESSING
        self.stage = OrderStage.INVENTORY
        self.touch()

    def advance_to(self, stage: OrderStage) -> None:
        """Move to the next stage on the success path; skipping is forbidden."""
        if self.status != OrderStatus.PROCESSING:
            raise InvariantViolationError(
                f"Cannot advance order in {self.status.value} state"
            )
        if stage == OrderStage.COMPLETED or next_stage(self.stage) != stage:
            raise InvariantViolationError(
                f"Cannot advance from {self.stage.value} to {stage.value}"
            )
        self.stage = stage
        self.touch()

    def complete(self) -> None:
        """PROCESSING/SHIPPING → COMPLETED/COMPLETED."""
        if self.status != OrderStatus.PROCESSING or self.stage != OrderStage.SHIPPING:
            raise InvariantViolationError(
                f"Cannot complete order in {self.status.value}/{self.stage.value}"
            )
        self.stage = OrderStage.COMPLETED
        self.status = OrderStatus.COMPLETED
        self.touch()

    def fail_at(self, stage: OrderStage) -> None:
        """Mark the order FAILED at *stage* (INVENTORY, PAYMENT or SHIPPING)."""
        if stage not in WORK_STAGES:
            raise InvariantViolationError(f"Order cannot fail at {stage.value}")
        if self.status == OrderStatus.COMPLETED:
            raise InvariantViolationError("Cannot fail a completed order")
        self.stage = stage
        self.status = OrderStatus.FAILED
        self.touch()

    def begin_retry(self, correlation_id: str) -> None:
        """FAILED/<stage> → PROCESSING/<stage> under a new correlation."""
        if self.status != OrderStatus.FAILED:
            raise InvariantViolationError(
                f"Cannot retry order in {self.status.value} state"
            )
        self.status = OrderStatus.PROCESSING
        self.correlation_id = correlation_id
        self.touch()
