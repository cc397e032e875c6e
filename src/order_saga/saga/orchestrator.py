"""SagaOrchestrator — drives an order through inventory → payment → shipping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from ..correlation import correlation_scope
from ..domain.events import EventType, Producer
from ..domain.order import OrderStage, OrderStatus, next_stage
from ..domain.pii import hash_customer_ref
from ..exceptions import StorageError
from ..ports.dedup_store import AlreadyProcessed
from .outcomes import DomainFailure, Success
from .steps import STAGE_STEPS, StageStep

if TYPE_CHECKING:
    from ..domain.dead_letter import DeadLetterEntry
    from ..domain.events import OrderEvent
    from ..domain.order import Order
    from ..ports.dedup_store import IDedupStore
    from ..ports.event_log import IEventLog
    from ..ports.order_repository import IOrderRepository
    from .compensation import CompensationEngine, CompensationResult
    from .executor import StageExecutor
    from .recorder import EventRecorder
    from .retry import DeadLetterManager

logger = logging.getLogger("order_saga.orchestrator")

DOWNSTREAM_FAILURE_REASON = "downstream invocation failed"
STORAGE_FAILURE_REASON = "storage write failed"

RetryTrigger = Literal["manual", "automatic"]


@dataclass(frozen=True)
class StageResult:
    """How one stage attempt ended.

    ``kind`` is ``advanced`` (success event appended), ``failed`` (order is
    now FAILED at the stage) or ``duplicate`` (another attempt already
    holds the reservation; nothing was done).
    """

    kind: Literal["advanced", "failed", "duplicate"]
    event_id: str | None


@dataclass(frozen=True)
class RetryAttempt:
    """Outcome of :meth:`SagaOrchestrator.retry`."""

    accepted: bool
    reason: str | None = None
    correlation_id: str | None = None
    order: Order | None = None
    duplicate: bool = False


class SagaOrchestrator:
    """State machine for the order saga.

    ``PENDING → INVENTORY → PAYMENT → SHIPPING → COMPLETED`` with a
    ``FAILED(at)`` state reachable from every working stage.

    Every stage attempt is:

    1. reserved in the dedup store under ``(<success event>, order,
       correlation)``. A lost reservation short-circuits: another attempt
       owns the effect;
    2. executed through the :class:`StageExecutor` under its timeout;
    3. recorded: the success event advances the order and dispatches the
       next stage in the same call. A ``DomainFailure`` records
       ``<Stage>Failed``, fails the order, compensates earlier stages and
       dead-letters the attempt. ``Unavailable`` records ``OrderFailed``
       (no compensation: nothing was decided) and dead-letters it.

    A ``StorageError`` during an attempt fails the order at its current
    stage and dead-letters it, leaving the retry to the sweep. Retries
    never re-run stages before the failed one.
    """

    def __init__(
        self,
        orders: IOrderRepository,
        dedup_store: IDedupStore,
        recorder: EventRecorder,
        executor: StageExecutor,
        compensation: CompensationEngine,
        dead_letters: DeadLetterManager,
    ) -> None:
        self._orders = orders
        self._dedup = dedup_store
        self._recorder = recorder
        self._executor = executor
        self._compensation = compensation
        self._dead_letters = dead_letters

    @property
    def orders(self) -> IOrderRepository:
        return self._orders

    @property
    def event_log(self) -> IEventLog:
        return self._recorder.event_log

    # ── Entry points ─────────────────────────────────────────────────

    async def start(self, order: Order) -> bool:
        """Record ``OrderCreated`` for a PENDING order and run the saga.

        Returns ``False`` when the order was already created under the same
        correlation (the caller lost the race); nothing is written then.

        ``OrderCreated`` is appended before the order row exists. If the
        append fails the reservation is released and the ``StorageError``
        propagates, so resubmitting the same request starts over. A previous
        attempt that recorded ``OrderCreated`` but never stored the row is
        picked up again by the next submission.
        """
        correlation_id = order.correlation_id
        if correlation_id is None:
            raise ValueError("order has no correlation_id")

        reservation = await self._dedup.check_and_reserve(
            EventType.ORDER_CREATED.value, order.id, correlation_id
        )
        with correlation_scope(correlation_id):
            if isinstance(reservation, AlreadyProcessed):
                created_id = await self._unfinished_creation(order, reservation)
                if created_id is None:
                    logger.info("Order %s already created, skipping", order.id)
                    return False
            else:
                created_id = await self._record_created(order, correlation_id)
            order.start()
            await self._orders.upsert(order)

        await self.run_from(order, OrderStage.INVENTORY, correlation_id, created_id)
        return True

    async def retry(
        self, order_id: str, trigger: RetryTrigger = "manual"
    ) -> RetryAttempt:
        """Re-run a FAILED order from the stage it failed at.

        The correlation is derived from the failure being retried, so a
        manual retry racing an automatic one for the same failure collides
        on the ``OrderRetried`` reservation and only one proceeds.
        """
        order = await self._orders.get(order_id)
        if order is None:
            return RetryAttempt(accepted=False, reason="order not found")
        if order.status != OrderStatus.FAILED:
            return RetryAttempt(
                accepted=False,
                reason=(
                    f"order is {order.status.value}, "
                    "only FAILED orders can be retried"
                ),
                order=order,
            )

        failure = await self._last_failure(order_id)
        if failure is not None:
            retry_correlation = f"retry:{failure.id}"
        else:
            # Failed on a storage error before its failure event was stored.
            retry_correlation = f"retry:{order.correlation_id}:{order.stage.value}"
        reservation = await self._dedup.check_and_reserve(
            EventType.ORDER_RETRIED.value, order_id, retry_correlation
        )
        if isinstance(reservation, AlreadyProcessed):
            logger.info(
                "Retry of order %s already in progress (corr=%s)",
                order_id,
                retry_correlation,
            )
            return RetryAttempt(
                accepted=False,
                reason="retry already in progress for this failure",
                correlation_id=retry_correlation,
                order=await self._orders.get(order_id),
                duplicate=True,
            )

        stage = order.stage
        failure_id = failure.id if failure is not None else None
        with correlation_scope(retry_correlation, failure_id):
            try:
                retried = await self._recorder.record(
                    order_id,
                    EventType.ORDER_RETRIED,
                    {
                        "stage": stage.value,
                        "previous_failure": (
                            failure.type.value if failure is not None else "unrecorded"
                        ),
                        "previous_failure_id": failure_id,
                        "trigger": trigger,
                    },
                    correlation_id=retry_correlation,
                    causation_id=failure_id,
                    produced_by=Producer.RETRY,
                )
            except StorageError:
                await self._release(
                    EventType.ORDER_RETRIED, order_id, retry_correlation
                )
                raise
            order.begin_retry(retry_correlation)
            try:
                await self._dedup.confirm(
                    EventType.ORDER_RETRIED.value,
                    order_id,
                    retry_correlation,
                    retried.id,
                )
                await self._orders.upsert(order)
            except StorageError as exc:
                await self._on_storage_failure(
                    order, STAGE_STEPS[stage], exc, retry_correlation, retried.id
                )
                return RetryAttempt(
                    accepted=True, correlation_id=retry_correlation, order=order
                )
            logger.info(
                "Order %s retried at %s (%s)", order_id, stage.value, trigger
            )

        order = await self.run_from(order, stage, retry_correlation, retried.id)
        return RetryAttempt(
            accepted=True, correlation_id=retry_correlation, order=order
        )

    async def resume_compensation(
        self, entry: DeadLetterEntry
    ) -> CompensationResult:
        """Re-run the compensation a dead-letter entry recorded as failed."""
        return await self._compensation.resume(entry)

    # ── Stage chain ──────────────────────────────────────────────────

    async def run_from(
        self,
        order: Order,
        stage: OrderStage,
        correlation_id: str,
        causation_id: str | None,
    ) -> Order:
        """Run *stage* and every following stage until completion or failure."""
        while stage != OrderStage.COMPLETED:
            result = await self.run_stage(
                order, STAGE_STEPS[stage], correlation_id, causation_id
            )
            if result.kind != "advanced":
                break
            causation_id = result.event_id
            stage = next_stage(stage)
        return order

    async def run_stage(
        self,
        order: Order,
        step: StageStep,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        with correlation_scope(correlation_id, causation_id):
            try:
                return await self._attempt(order, step, correlation_id, causation_id)
            except StorageError as exc:
                return await self._on_storage_failure(
                    order, step, exc, correlation_id, causation_id
                )

    async def _attempt(
        self,
        order: Order,
        step: StageStep,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        reservation = await self._dedup.check_and_reserve(
            step.success_event.value, order.id, correlation_id
        )
        if isinstance(reservation, AlreadyProcessed):
            logger.info(
                "Stage %s already processed for order %s (event=%s)",
                step.name,
                order.id,
                reservation.existing_event_id,
            )
            return StageResult("duplicate", reservation.existing_event_id)

        outcome = await self._executor.execute(step.name, order.id, correlation_id)
        if isinstance(outcome, Success):
            return await self._on_success(
                order, step, outcome, correlation_id, causation_id
            )
        if isinstance(outcome, DomainFailure):
            return await self._on_domain_failure(
                order, step, outcome, correlation_id, causation_id
            )
        return await self._on_unavailable(
            order, step, outcome.cause, correlation_id, causation_id
        )

    # ── Outcome handlers ─────────────────────────────────────────────

    async def _on_success(
        self,
        order: Order,
        step: StageStep,
        outcome: Success,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        event = await self._recorder.record(
            order.id,
            step.success_event,
            _success_payload(step, outcome.payload),
            correlation_id=correlation_id,
            causation_id=causation_id,
            produced_by=step.producer,
        )
        await self._dedup.confirm(
            step.success_event.value, order.id, correlation_id, event.id
        )
        if step.stage == OrderStage.SHIPPING:
            order.complete()
        else:
            order.advance_to(next_stage(step.stage))
        await self._orders.upsert(order)
        return StageResult("advanced", event.id)

    async def _on_domain_failure(
        self,
        order: Order,
        step: StageStep,
        outcome: DomainFailure,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        reason = outcome.reason or "rejected"
        event = await self._recorder.record(
            order.id,
            step.failure_event,
            {"reason": reason},
            correlation_id=correlation_id,
            causation_id=causation_id,
            produced_by=step.producer,
        )
        await self._dedup.confirm(
            step.success_event.value, order.id, correlation_id, event.id
        )
        await self._dedup.confirm(
            step.failure_event.value, order.id, correlation_id, event.id
        )
        order.fail_at(step.stage)
        await self._orders.upsert(order)
        logger.warning(
            "Order %s failed at %s: %s", order.id, step.stage.value, reason
        )

        await self._compensation.compensate(
            order.id, step.stage, correlation_id, event.id
        )
        await self._dead_letters.enqueue(
            order.id,
            step.failure_event.value,
            reason,
            step.stage,
            correlation_id=correlation_id,
        )
        return StageResult("failed", event.id)

    async def _on_unavailable(
        self,
        order: Order,
        step: StageStep,
        cause: str,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        event = await self._recorder.record(
            order.id,
            EventType.ORDER_FAILED,
            {
                "reason": DOWNSTREAM_FAILURE_REASON,
                "stage": step.stage.value,
                "cause": cause,
            },
            correlation_id=correlation_id,
            causation_id=causation_id,
            produced_by=Producer.ORDER,
        )
        await self._dedup.confirm(
            step.success_event.value, order.id, correlation_id, event.id
        )
        order.fail_at(step.stage)
        await self._orders.upsert(order)
        logger.warning(
            "Order %s could not run %s: %s", order.id, step.name, cause
        )
        await self._dead_letters.enqueue(
            order.id,
            EventType.ORDER_FAILED.value,
            f"{DOWNSTREAM_FAILURE_REASON}: {cause}",
            step.stage,
            correlation_id=correlation_id,
        )
        return StageResult("failed", event.id)

    async def _on_storage_failure(
        self,
        order: Order,
        step: StageStep,
        exc: StorageError,
        correlation_id: str,
        causation_id: str | None,
    ) -> StageResult:
        """Leave the order FAILED with a dead-letter entry after a storage error.

        Recording ``OrderFailed`` is attempted once and may itself fail. The
        order row and the dead-letter entry must be stored, otherwise the
        ``StorageError`` propagates.
        """
        logger.error(
            "Storage failure during %s for order %s: %s", step.name, order.id, exc
        )
        if order.status == OrderStatus.COMPLETED:
            # OrderShipped is recorded; only the row is behind.
            await self._orders.upsert(order)
            return StageResult("advanced", None)

        error = f"{STORAGE_FAILURE_REASON}: {exc}"
        event_type = EventType.ORDER_FAILED.value
        event_id: str | None = None
        if order.status == OrderStatus.FAILED:
            try:
                failure = await self._last_failure(order.id)
            except StorageError:
                failure = None
            if failure is not None:
                event_type = failure.type.value
                event_id = failure.id
        else:
            order.fail_at(order.stage)
            try:
                failed = await self._recorder.record(
                    order.id,
                    EventType.ORDER_FAILED,
                    {
                        "reason": STORAGE_FAILURE_REASON,
                        "stage": order.stage.value,
                        "cause": str(exc),
                    },
                    correlation_id=correlation_id,
                    causation_id=causation_id,
                    produced_by=Producer.ORDER,
                )
                event_id = failed.id
                await self._dedup.confirm(
                    step.success_event.value, order.id, correlation_id, failed.id
                )
            except StorageError as record_exc:
                logger.error(
                    "OrderFailed not recorded for order %s: %s", order.id, record_exc
                )

        await self._orders.upsert(order)
        await self._dead_letters.enqueue(
            order.id,
            event_type,
            error,
            order.stage,
            correlation_id=correlation_id,
        )
        return StageResult("failed", event_id)

    # ── Helpers ──────────────────────────────────────────────────────

    async def _record_created(self, order: Order, correlation_id: str) -> str:
        try:
            created = await self._recorder.record(
                order.id,
                EventType.ORDER_CREATED,
                {
                    "customer_ref_hash": hash_customer_ref(order.customer_ref),
                    "items": [item.model_dump(mode="json") for item in order.items],
                    "item_count": len(order.items),
                    "total_amount": str(order.total_amount),
                },
                correlation_id=correlation_id,
                causation_id=None,
                produced_by=Producer.ORDER,
            )
        except StorageError:
            await self._release(EventType.ORDER_CREATED, order.id, correlation_id)
            raise
        await self._dedup.confirm(
            EventType.ORDER_CREATED.value, order.id, correlation_id, created.id
        )
        return created.id

    async def _unfinished_creation(
        self, order: Order, reservation: AlreadyProcessed
    ) -> str | None:
        """``OrderCreated`` id of an earlier attempt that never stored the row."""
        if await self._orders.get(order.id) is not None:
            return None
        events = await self._recorder.event_log.read_events(order.id)
        created = next(
            (e for e in events if e.type == EventType.ORDER_CREATED), None
        )
        if created is None:
            return None
        logger.warning(
            "Order %s has %s recorded but no stored row, resuming",
            order.id,
            created.id,
        )
        if reservation.in_flight:
            await self._dedup.confirm(
                EventType.ORDER_CREATED.value,
                order.id,
                created.correlation_id,
                created.id,
            )
        return created.id

    async def _release(
        self, event_type: EventType, order_id: str, correlation_id: str
    ) -> None:
        try:
            await self._dedup.release(event_type.value, order_id, correlation_id)
        except StorageError as exc:
            logger.error(
                "Could not release %s reservation for order %s: %s",
                event_type.value,
                order_id,
                exc,
            )

    async def _last_failure(self, order_id: str) -> OrderEvent | None:
        events = await self._recorder.event_log.read_events(order_id)
        for event in reversed(events):
            if event.is_failure:
                return event
        return None


def _success_payload(step: StageStep, data: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {"details": dict(data)}
    if step.stage == OrderStage.PAYMENT and data.get("transaction_id"):
        payload["transaction_id"] = str(data["transaction_id"])
    elif step.stage == OrderStage.SHIPPING and data.get("tracking_number"):
        payload["tracking_number"] = str(data["tracking_number"])
    return payload
