"""OrderSagaService — the operations the engine exposes to callers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .domain.order import Order, OrderItem, OrderStatus
from .domain.pii import minimize_pii
from .exceptions import NotFoundError, OrderValidationError, StorageError

if TYPE_CHECKING:
    from .domain.dead_letter import DeadLetterEntry, DeadLetterStatus
    from .domain.events import OrderEvent
    from .domain.order import OrderStage
    from .saga.diagnostics import Diagnosis, SagaDiagnostics
    from .saga.orchestrator import SagaOrchestrator
    from .saga.retry import DeadLetterManager, ReplayOutcome

logger = logging.getLogger("order_saga.service")

#: Namespace for order ids derived from caller idempotency tokens.
ORDER_ID_NAMESPACE = uuid.UUID("6f0c2a4e-3b7d-4c1e-9a55-0d2f8b6e1c3a")


class CreateOrderRequest(BaseModel):
    """Validated create-order input."""

    model_config = ConfigDict(extra="forbid")

    customer_ref: str = Field(min_length=1)
    items: list[OrderItem] = Field(min_length=1)
    idempotency_token: str | None = Field(default=None, min_length=1)


@dataclass(frozen=True)
class CreateOrderResult:
    order_id: str
    correlation_id: str
    created: bool


@dataclass(frozen=True)
class OrderView:
    order: Order
    events: list[OrderEvent] = field(default_factory=list)


@dataclass(frozen=True)
class RetryResult:
    """``accepted=False`` carries the rejection ``reason``."""

    accepted: bool
    reason: str | None = None
    correlation_id: str | None = None
    stage: OrderStage | None = None
    status: OrderStatus | None = None


@dataclass(frozen=True)
class ReplayResult:
    entry_id: str
    accepted: bool
    reason: str | None = None
    status: DeadLetterStatus | None = None
    already_settled: bool = False

    @classmethod
    def from_outcome(cls, outcome: ReplayOutcome) -> ReplayResult:
        return cls(
            entry_id=outcome.entry_id,
            accepted=outcome.accepted,
            reason=outcome.reason,
            status=outcome.status,
            already_settled=outcome.already_settled,
        )


def order_id_for_token(token: str) -> str:
    """Stable order id for a caller-supplied idempotency token."""
    return str(uuid.uuid5(ORDER_ID_NAMESPACE, token))


def _validation_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ("__root__",)))
        errors.setdefault(loc or "__root__", []).append(
            error.get("msg", "validation error")
        )
    return errors


class OrderSagaService:
    """Boundary API used by dashboards, CLIs or HTTP handlers.

    Stage-worker failures never surface as exceptions here: they are
    recorded on the order and returned as structured results. Invalid input
    raises :class:`OrderValidationError` before the saga is entered.
    """

    def __init__(
        self,
        orchestrator: SagaOrchestrator,
        dead_letters: DeadLetterManager,
        diagnostics: SagaDiagnostics,
    ) -> None:
        self._orchestrator = orchestrator
        self._dead_letters = dead_letters
        self._diagnostics = diagnostics

    # ── Orders ───────────────────────────────────────────────────────

    async def create_order(
        self,
        customer_ref: str,
        items: list[dict[str, Any]] | list[OrderItem],
        idempotency_token: str | None = None,
    ) -> CreateOrderResult:
        """Create an order and run its saga.

        With an *idempotency_token* the same token always maps to the same
        order; repeating the call returns ``created=False``.

        Raises:
            OrderValidationError: malformed request.
            StorageError: the order could not be recorded.
        """
        try:
            request = CreateOrderRequest(
                customer_ref=customer_ref,
                items=items,  # type: ignore[arg-type]
                idempotency_token=idempotency_token,
            )
        except PydanticValidationError as exc:
            errors = _validation_errors(exc)
            logger.warning(
                "Rejected create-order request %s: %s",
                minimize_pii({"customer_ref": customer_ref}),
                errors,
            )
            raise OrderValidationError(errors) from exc

        if request.idempotency_token is not None:
            order_id = order_id_for_token(request.idempotency_token)
        else:
            order_id = str(uuid.uuid4())
        correlation_id = f"corr_{order_id}"

        existing = await self._orchestrator.orders.get(order_id)
        if existing is not None:
            logger.info("Order %s already exists for idempotency token", order_id)
            return CreateOrderResult(
                order_id=order_id,
                correlation_id=existing.correlation_id or correlation_id,
                created=False,
            )

        order = Order.create(
            order_id, request.customer_ref, request.items, correlation_id
        )
        created = await self._orchestrator.start(order)
        return CreateOrderResult(
            order_id=order_id, correlation_id=correlation_id, created=created
        )

    async def get_order(self, order_id: str) -> OrderView:
        order = await self._orchestrator.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        events = await self._orchestrator.event_log.read_events(order_id)
        return OrderView(order=order, events=events)

    async def list_orders(
        self, statuses: list[OrderStatus] | None = None, limit: int = 50
    ) -> list[Order]:
        """Most recently updated orders, optionally filtered by status."""
        return await self._orchestrator.orders.list_by_status(
            statuses or list(OrderStatus), limit=limit
        )

    async def retry_order(self, order_id: str) -> RetryResult:
        """Manually retry a FAILED order from the stage it failed at."""
        try:
            attempt = await self._orchestrator.retry(order_id, trigger="manual")
            if attempt.accepted and attempt.order is not None:
                if attempt.order.status != OrderStatus.FAILED:
                    await self._dead_letters.resolve_open_for_order(order_id)
        except StorageError as exc:
            logger.error("Retry of order %s aborted: %s", order_id, exc)
            return RetryResult(accepted=False, reason=str(exc))

        order = attempt.order
        return RetryResult(
            accepted=attempt.accepted,
            reason=attempt.reason,
            correlation_id=attempt.correlation_id,
            stage=order.stage if order is not None else None,
            status=order.status if order is not None else None,
        )

    async def diagnose(self, order_id: str) -> Diagnosis:
        """Read-only diagnosis; raises :class:`NotFoundError` if unknown."""
        return await self._diagnostics.diagnose(order_id)

    # ── Dead letters ─────────────────────────────────────────────────

    async def replay_dead_letter(self, entry_id: str) -> ReplayResult:
        return ReplayResult.from_outcome(await self._dead_letters.replay(entry_id))

    async def replay_dead_letters(
        self,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[ReplayResult]:
        outcomes = await self._dead_letters.replay_batch(
            order_id=order_id, event_type=event_type, limit=limit
        )
        return [ReplayResult.from_outcome(o) for o in outcomes]

    async def list_dead_letters(
        self,
        status: DeadLetterStatus | None = None,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterEntry]:
        return await self._dead_letters.list_entries(
            status=status, order_id=order_id, event_type=event_type, limit=limit
        )
