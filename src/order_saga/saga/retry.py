"""DeadLetterManager — dead-letter bookkeeping, retry sweep and replay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..domain.dead_letter import (
    COMPENSATION_FAILED,
    DeadLetterEntry,
    DeadLetterStatus,
)
from ..domain.order import OrderStatus
from ..exceptions import NotFoundError, OrderSagaError, StorageError
from ..ports.metrics import NullMetricsSink

if TYPE_CHECKING:
    from ..domain.order import OrderStage
    from ..ports.dead_letters import IDeadLetterRepository
    from ..ports.dedup_store import IDedupStore
    from ..ports.metrics import IMetricsSink
    from ..ports.order_repository import IOrderRepository
    from .orchestrator import SagaOrchestrator

logger = logging.getLogger("order_saga.retry")

DEFAULT_MAX_RETRIES = 3
DEFAULT_COOLDOWN = timedelta(seconds=60)
DEFAULT_BATCH_SIZE = 10


@dataclass
class SweepReport:
    """Counts from one automatic retry sweep."""

    selected: int = 0
    attempted: int = 0
    resolved: int = 0
    permanently_failed: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass(frozen=True)
class ReplayOutcome:
    """Result of an operator replay of one dead-letter entry.

    ``already_settled`` is set when the entry was RESOLVED or REPLAYED
    before the call; nothing was executed then.
    """

    entry_id: str
    accepted: bool
    reason: str | None = None
    status: DeadLetterStatus | None = None
    already_settled: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeadLetterManager:
    """Stores failed stage attempts and retries them with a bounded budget.

    Automatic sweep (:meth:`sweep`), run periodically by
    :class:`~order_saga.saga.worker.DeadLetterRetryWorker`:

    1. select PENDING/RETRYING entries below ``max_retries`` whose cooldown
       has elapsed, oldest first, at most ``batch_size``;
    2. per entry: if the order is no longer FAILED mark it RESOLVED;
       otherwise count the attempt and retry the order;
    3. an entry whose order is still FAILED after its last allowed attempt
       becomes PERMANENTLY_FAILED; only :meth:`replay` touches it after
       that.

    Manual replay ignores the cooldown and marks the entry REPLAYED when
    the order recovers. Settled entries replay as a no-op.
    """

    def __init__(
        self,
        repository: IDeadLetterRepository,
        orders: IOrderRepository,
        dedup_store: IDedupStore | None = None,
        metrics: IMetricsSink | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._repository = repository
        self._orders = orders
        self._dedup = dedup_store
        self._metrics = metrics or NullMetricsSink()
        self._max_retries = max_retries
        self._cooldown = cooldown
        self._batch_size = batch_size
        self._orchestrator: SagaOrchestrator | None = None

    def set_orchestrator(self, orchestrator: SagaOrchestrator | None) -> None:
        """Set or clear the orchestrator used for retries and replays."""
        self._orchestrator = orchestrator

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def _require_orchestrator(self) -> SagaOrchestrator:
        if self._orchestrator is None:
            raise OrderSagaError("DeadLetterManager has no orchestrator bound")
        return self._orchestrator

    async def _load(self, entry_id: str) -> DeadLetterEntry:
        entry = await self._repository.get(entry_id)
        if entry is None:
            raise NotFoundError("DeadLetterEntry", entry_id)
        return entry

    # ── Enqueue ──────────────────────────────────────────────────────

    async def enqueue(
        self,
        order_id: str,
        event_type: str,
        error: str,
        stage: OrderStage,
        correlation_id: str | None = None,
    ) -> DeadLetterEntry:
        """Record a failed stage attempt.

        An order has at most one open stage entry: a new failure of the same
        order refreshes it (keeping its ``retry_count``).
        """
        open_entries = await self._repository.find_open_for_order(order_id)
        if open_entries:
            entry = open_entries[0]
            entry.record_failure(event_type, error, stage)
            entry.correlation_id = correlation_id
            await self._repository.add(entry)
            logger.info(
                "Dead letter %s refreshed for order %s (%s, retry %d/%d)",
                entry.id,
                order_id,
                event_type,
                entry.retry_count,
                entry.max_retries,
            )
            return entry

        entry = DeadLetterEntry(
            order_id=order_id,
            event_type=event_type,
            stage=stage,
            correlation_id=correlation_id,
            error_message=error,
            max_retries=self._max_retries,
        )
        await self._repository.add(entry)
        self._metrics.record_dead_letter("enqueued")
        logger.warning(
            "Dead letter %s enqueued for order %s: %s (%s)",
            entry.id,
            order_id,
            event_type,
            error,
        )
        return entry

    async def enqueue_compensation_failure(
        self,
        order_id: str,
        stage: OrderStage,
        error: str,
        correlation_id: str | None = None,
    ) -> DeadLetterEntry:
        """Surface a failed compensation to operators.

        Kept apart from the stage entry and never swept automatically.
        """
        entry = DeadLetterEntry(
            order_id=order_id,
            event_type=COMPENSATION_FAILED,
            stage=stage,
            correlation_id=correlation_id,
            error_message=error,
            max_retries=0,
            status=DeadLetterStatus.PERMANENTLY_FAILED,
        )
        await self._repository.add(entry)
        self._metrics.record_dead_letter("enqueued")
        logger.error(
            "Compensation dead letter %s for order %s: %s",
            entry.id,
            order_id,
            error,
        )
        return entry

    # ── Transitions ──────────────────────────────────────────────────

    async def list_eligible(
        self,
        max_retries: int | None = None,
        cooldown: timedelta | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[DeadLetterEntry]:
        return await self._repository.list_eligible(
            now or _utcnow(),
            self._cooldown if cooldown is None else cooldown,
            limit=self._batch_size if limit is None else limit,
            max_retries=self._max_retries if max_retries is None else max_retries,
        )

    async def mark_attempt(
        self, entry_id: str, now: datetime | None = None
    ) -> DeadLetterEntry:
        entry = await self._load(entry_id)
        entry.record_attempt(now)
        await self._repository.add(entry)
        self._metrics.record_dead_letter("retried")
        return entry

    async def mark_permanently_failed(self, entry_id: str) -> DeadLetterEntry:
        entry = await self._load(entry_id)
        entry.mark_permanently_failed()
        await self._repository.add(entry)
        self._metrics.record_dead_letter("permanently_failed")
        logger.error(
            "Dead letter %s for order %s permanently failed after %d retries",
            entry.id,
            entry.order_id,
            entry.retry_count,
        )
        return entry

    async def mark_resolved(self, entry_id: str) -> DeadLetterEntry:
        entry = await self._load(entry_id)
        entry.mark_resolved()
        await self._repository.add(entry)
        self._metrics.record_dead_letter("resolved")
        logger.info("Dead letter %s resolved (order %s)", entry.id, entry.order_id)
        return entry

    async def mark_replayed(
        self, entry_id: str, now: datetime | None = None
    ) -> DeadLetterEntry:
        entry = await self._load(entry_id)
        entry.mark_replayed(now)
        await self._repository.add(entry)
        self._metrics.record_dead_letter("replayed")
        logger.info("Dead letter %s replayed (order %s)", entry.id, entry.order_id)
        return entry

    async def resolve_open_for_order(self, order_id: str) -> int:
        """Resolve every open entry of an order that left FAILED."""
        resolved = 0
        for entry in await self._repository.find_open_for_order(order_id):
            await self.mark_resolved(entry.id)
            resolved += 1
        return resolved

    # ── Automatic sweep ──────────────────────────────────────────────

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Retry one batch of eligible entries.

        A failure on one entry is logged and counted; the rest of the batch
        still runs.
        """
        orchestrator = self._require_orchestrator()
        now = now or _utcnow()
        entries = await self.list_eligible(now=now)
        report = SweepReport(selected=len(entries))
        for entry in entries:
            try:
                await self._retry_entry(orchestrator, entry, now, report)
            except Exception:
                report.errors += 1
                logger.exception(
                    "Retry of dead letter %s (order %s) failed",
                    entry.id,
                    entry.order_id,
                )
        if entries:
            logger.info(
                "Sweep: %d selected, %d attempted, %d resolved, "
                "%d permanently failed, %d skipped, %d errors",
                report.selected,
                report.attempted,
                report.resolved,
                report.permanently_failed,
                report.skipped,
                report.errors,
            )
        return report

    async def _retry_entry(
        self,
        orchestrator: SagaOrchestrator,
        entry: DeadLetterEntry,
        now: datetime,
        report: SweepReport,
    ) -> None:
        order = await self._orders.get(entry.order_id)
        if order is None:
            logger.warning(
                "Dead letter %s references unknown order %s, skipping",
                entry.id,
                entry.order_id,
            )
            report.skipped += 1
            return
        if order.status != OrderStatus.FAILED:
            await self.mark_resolved(entry.id)
            report.resolved += 1
            return

        await self.mark_attempt(entry.id, now)
        report.attempted += 1
        attempt = await orchestrator.retry(entry.order_id, trigger="automatic")
        if not attempt.accepted:
            logger.info(
                "Automatic retry of order %s not accepted: %s",
                entry.order_id,
                attempt.reason,
            )

        order = await self._orders.get(entry.order_id)
        current = await self._load(entry.id)
        if not current.is_open:
            return
        if order is not None and order.status != OrderStatus.FAILED:
            await self.mark_resolved(current.id)
            report.resolved += 1
        elif current.retries_exhausted:
            await self.mark_permanently_failed(current.id)
            report.permanently_failed += 1

    # ── Manual replay ────────────────────────────────────────────────

    async def replay(self, entry_id: str) -> ReplayOutcome:
        """Operator-triggered replay of one entry (no cooldown)."""
        orchestrator = self._require_orchestrator()
        entry = await self._repository.get(entry_id)
        if entry is None:
            return ReplayOutcome(
                entry_id, accepted=False, reason="dead letter not found"
            )
        if entry.is_settled:
            return ReplayOutcome(
                entry_id,
                accepted=True,
                reason=f"dead letter already {entry.status.value}",
                status=entry.status,
                already_settled=True,
            )

        try:
            if entry.is_compensation:
                return await self._replay_compensation(orchestrator, entry)
            return await self._replay_stage(orchestrator, entry)
        except StorageError as exc:
            logger.error("Replay of dead letter %s failed: %s", entry_id, exc)
            return ReplayOutcome(
                entry_id, accepted=False, reason=str(exc), status=entry.status
            )

    async def _replay_stage(
        self, orchestrator: SagaOrchestrator, entry: DeadLetterEntry
    ) -> ReplayOutcome:
        order = await self._orders.get(entry.order_id)
        if order is None:
            return ReplayOutcome(
                entry.id, accepted=False, reason="order not found", status=entry.status
            )
        if order.status != OrderStatus.FAILED:
            resolved = await self.mark_resolved(entry.id)
            return ReplayOutcome(
                entry.id,
                accepted=True,
                reason=f"order already {order.status.value}",
                status=resolved.status,
            )

        attempt = await orchestrator.retry(entry.order_id, trigger="manual")
        if not attempt.accepted:
            return ReplayOutcome(
                entry.id, accepted=False, reason=attempt.reason, status=entry.status
            )

        current = await self._load(entry.id)
        if attempt.order is not None and attempt.order.status != OrderStatus.FAILED:
            if not current.is_settled:
                current = await self.mark_replayed(current.id)
            await self.resolve_open_for_order(entry.order_id)
            return ReplayOutcome(entry.id, accepted=True, status=current.status)
        return ReplayOutcome(
            entry.id,
            accepted=True,
            reason="order failed again",
            status=current.status,
        )

    async def _replay_compensation(
        self, orchestrator: SagaOrchestrator, entry: DeadLetterEntry
    ) -> ReplayOutcome:
        result = await orchestrator.resume_compensation(entry)
        if result.succeeded:
            replayed = await self.mark_replayed(entry.id)
            return ReplayOutcome(entry.id, accepted=True, status=replayed.status)
        entry.note_error(f"{result.failed_action}: {result.error}")
        await self._repository.add(entry)
        return ReplayOutcome(
            entry.id,
            accepted=True,
            reason=f"compensation {result.failed_action} failed again",
            status=entry.status,
        )

    async def replay_batch(
        self,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[ReplayOutcome]:
        """Replay every unsettled entry matching the filters, oldest first."""
        entries = await self._repository.find(
            statuses=[
                DeadLetterStatus.PENDING,
                DeadLetterStatus.RETRYING,
                DeadLetterStatus.PERMANENTLY_FAILED,
            ],
            order_id=order_id,
            event_type=event_type,
            limit=limit,
        )
        outcomes = []
        for entry in reversed(entries):
            outcomes.append(await self.replay(entry.id))
        return outcomes

    # ── Queries & housekeeping ───────────────────────────────────────

    async def list_entries(
        self,
        status: DeadLetterStatus | None = None,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterEntry]:
        return await self._repository.find(
            statuses=[status] if status is not None else None,
            order_id=order_id,
            event_type=event_type,
            limit=limit,
        )

    async def purge_dedup_keys(self, now: datetime | None = None) -> int:
        """Drop dedup keys past their retention window."""
        if self._dedup is None:
            return 0
        purged = await self._dedup.purge_expired(now or _utcnow())
        if purged:
            logger.info("Purged %d expired dedup keys", purged)
        return purged
