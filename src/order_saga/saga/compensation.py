"""CompensationEngine — undo committed stages after a domain failure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..correlation import correlation_scope
from ..domain.events import EventType, Producer
from ..domain.order import OrderStage
from ..ports.dedup_store import AlreadyProcessed
from .outcomes import DomainFailure, Success
from .steps import COMPENSATION_STEPS, STAGE_STEPS, compensations_for

if TYPE_CHECKING:
    from ..domain.dead_letter import DeadLetterEntry
    from ..domain.events import OrderEvent
    from ..ports.dedup_store import IDedupStore
    from .executor import StageExecutor
    from .recorder import EventRecorder
    from .retry import DeadLetterManager

logger = logging.getLogger("order_saga.compensation")


@dataclass
class CompensationResult:
    """What one compensation run achieved."""

    actions: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed_action: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_action is None


class CompensationEngine:
    """Runs compensating actions through the stage executor.

    * PAYMENT failure  → ``release_inventory``
    * SHIPPING failure → ``refund_payment``, then ``release_inventory``

    An action only runs while the event log shows its stage effect still
    in place (more ``InventoryReserved`` than ``InventoryReleased``, say),
    so a retry that fails again never undoes the same reservation twice.
    Each run is also guarded by a dedup reservation on its done-event
    under the attempt's correlation. A failing action stops the run,
    records ``CompensationFailed`` and leaves a dead-letter entry for an
    operator; it is never retried automatically.
    """

    def __init__(
        self,
        executor: StageExecutor,
        dedup_store: IDedupStore,
        recorder: EventRecorder,
        dead_letters: DeadLetterManager,
    ) -> None:
        self._executor = executor
        self._dedup = dedup_store
        self._recorder = recorder
        self._dead_letters = dead_letters

    async def compensate(
        self,
        order_id: str,
        failed_stage: OrderStage,
        correlation_id: str,
        causation_id: str | None,
    ) -> CompensationResult:
        """Start compensation for a domain failure at *failed_stage*."""
        actions = compensations_for(failed_stage)
        if not actions:
            return CompensationResult()
        events = await self._recorder.event_log.read_events(order_id)
        actions = outstanding_undos(events, actions)
        if not actions:
            logger.info(
                "Nothing left to compensate for order %s at %s",
                order_id,
                failed_stage.value,
            )
            return CompensationResult()

        reservation = await self._dedup.check_and_reserve(
            EventType.COMPENSATION_STARTED.value, order_id, correlation_id
        )
        if isinstance(reservation, AlreadyProcessed):
            logger.info(
                "Compensation already started for order %s (corr=%s)",
                order_id,
                correlation_id,
            )
            started_id = reservation.existing_event_id or causation_id
        else:
            started = await self._recorder.record(
                order_id,
                EventType.COMPENSATION_STARTED,
                {
                    "action": ",".join(actions),
                    "actions": actions,
                    "failed_stage": failed_stage.value,
                },
                correlation_id=correlation_id,
                causation_id=causation_id,
                produced_by=Producer.COMPENSATION,
            )
            await self._dedup.confirm(
                EventType.COMPENSATION_STARTED.value,
                order_id,
                correlation_id,
                started.id,
            )
            started_id = started.id

        return await self.run_actions(
            order_id,
            actions,
            failed_stage,
            correlation_id=correlation_id,
            causation_id=started_id,
        )

    async def resume(self, entry: DeadLetterEntry) -> CompensationResult:
        """Re-run what a failed compensation left undone (operator replay).

        The correlation is derived from the entry and the latest
        ``CompensationFailed`` event, so two concurrent replays of the same
        failure cannot both act while a later replay still gets a fresh run.
        """
        events = await self._recorder.event_log.read_events(entry.order_id)
        failures = [e for e in events if e.type == EventType.COMPENSATION_FAILED]
        if not failures:
            return CompensationResult()
        last = failures[-1]
        remaining = list(last.payload.get("remaining_actions") or [])
        return await self.run_actions(
            entry.order_id,
            remaining,
            entry.stage,
            correlation_id=f"replay:{entry.id}:{last.id}",
            causation_id=last.id,
            enqueue_failure=False,
        )

    async def run_actions(
        self,
        order_id: str,
        actions: list[str],
        failed_stage: OrderStage,
        *,
        correlation_id: str,
        causation_id: str | None,
        enqueue_failure: bool = True,
    ) -> CompensationResult:
        result = CompensationResult(actions=list(actions))
        events = await self._recorder.event_log.read_events(order_id)
        pending = outstanding_undos(events, actions)
        for index, action in enumerate(actions):
            step = COMPENSATION_STEPS[action]
            if action not in pending:
                logger.info(
                    "Compensation %s has nothing to undo for order %s",
                    action,
                    order_id,
                )
                result.completed.append(action)
                continue
            reservation = await self._dedup.check_and_reserve(
                step.done_event.value, order_id, correlation_id
            )
            if isinstance(reservation, AlreadyProcessed):
                logger.info(
                    "Compensation %s already processed for order %s",
                    action,
                    order_id,
                )
                result.completed.append(action)
                continue

            with correlation_scope(correlation_id, causation_id):
                outcome = await self._executor.execute(
                    action, order_id, correlation_id
                )

            if isinstance(outcome, Success):
                done = await self._recorder.record(
                    order_id,
                    step.done_event,
                    {"action": action, "details": outcome.payload},
                    correlation_id=correlation_id,
                    causation_id=causation_id,
                    produced_by=Producer.COMPENSATION,
                )
                await self._dedup.confirm(
                    step.done_event.value, order_id, correlation_id, done.id
                )
                result.completed.append(action)
                continue

            error = (
                outcome.reason if isinstance(outcome, DomainFailure) else outcome.cause
            ) or "compensation failed"
            failed = await self._recorder.record(
                order_id,
                EventType.COMPENSATION_FAILED,
                {
                    "action": action,
                    "reason": error,
                    "remaining_actions": actions[index:],
                },
                correlation_id=correlation_id,
                causation_id=causation_id,
                produced_by=Producer.COMPENSATION,
            )
            await self._dedup.confirm(
                step.done_event.value, order_id, correlation_id, failed.id
            )
            logger.error(
                "Compensation %s failed for order %s: %s", action, order_id, error
            )
            result.failed_action = action
            result.error = error
            if enqueue_failure:
                await self._dead_letters.enqueue_compensation_failure(
                    order_id,
                    failed_stage,
                    f"{action}: {error}",
                    correlation_id=correlation_id,
                )
            break
        return result


def outstanding_undos(events: list[OrderEvent], actions: list[str]) -> list[str]:
    """The *actions* whose stage effect the log still shows in place."""
    pending = []
    for action in actions:
        step = COMPENSATION_STEPS[action]
        applied_event = STAGE_STEPS[step.undoes].success_event
        applied = sum(1 for e in events if e.type == applied_event)
        undone = sum(1 for e in events if e.type == step.done_event)
        if applied > undone:
            pending.append(action)
    return pending
