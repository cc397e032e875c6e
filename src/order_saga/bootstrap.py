"""bootstrap_saga_engine — one-call wiring for the order saga."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from .adapters.memory import (
    InMemoryDeadLetterRepository,
    InMemoryDedupStore,
    InMemoryEventLog,
    InMemoryOrderRepository,
)
from .adapters.workers import FailureRateDecision, SimulatedStageWorker, UniformDelay
from .config import SagaSettings, get_settings
from .ports.metrics import NullMetricsSink
from .saga.compensation import CompensationEngine
from .saga.diagnostics import SagaDiagnostics
from .saga.executor import StageExecutor
from .saga.orchestrator import SagaOrchestrator
from .saga.recorder import EventRecorder
from .saga.retry import DeadLetterManager
from .saga.worker import DeadLetterRetryWorker
from .service import OrderSagaService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from .ports.dead_letters import IDeadLetterRepository
    from .ports.dedup_store import IDedupStore
    from .ports.event_log import IEventLog
    from .ports.metrics import IMetricsSink
    from .ports.order_repository import IOrderRepository
    from .ports.stage_worker import IStageWorker

logger = logging.getLogger("order_saga.bootstrap")


class SagaEngine:
    """Container returned by :func:`bootstrap_saga_engine`.

    Attributes:
        service: The boundary API (:class:`OrderSagaService`).
        orchestrator: The saga state machine.
        dead_letters: The :class:`DeadLetterManager`.
        diagnostics: Read-only order diagnosis.
        retry_worker: Optional :class:`DeadLetterRetryWorker` (if
            ``sweep_interval`` was not disabled).
        settings: The settings the engine was wired from.
    """

    def __init__(
        self,
        service: OrderSagaService,
        orchestrator: SagaOrchestrator,
        dead_letters: DeadLetterManager,
        diagnostics: SagaDiagnostics,
        settings: SagaSettings,
        retry_worker: DeadLetterRetryWorker | None = None,
    ) -> None:
        self.service = service
        self.orchestrator = orchestrator
        self.dead_letters = dead_letters
        self.diagnostics = diagnostics
        self.settings = settings
        self.retry_worker = retry_worker

    async def start(self) -> None:
        if self.retry_worker is not None:
            await self.retry_worker.start()

    async def stop(self) -> None:
        if self.retry_worker is not None:
            await self.retry_worker.stop()


def simulated_worker(
    settings: SagaSettings, rng: random.Random | None = None
) -> SimulatedStageWorker:
    """Demo stage worker with the failure rates and delays from *settings*."""
    rng = rng or random.Random()
    return SimulatedStageWorker(
        decide=FailureRateDecision(settings.failure_rates(), rng=rng),
        delay=UniformDelay(settings.delay_bounds_ms(), rng=rng),
    )


def bootstrap_saga_engine(
    *,
    settings: SagaSettings | None = None,
    event_log: IEventLog | None = None,
    dedup_store: IDedupStore | None = None,
    orders: IOrderRepository | None = None,
    dead_letter_repository: IDeadLetterRepository | None = None,
    worker: IStageWorker | None = None,
    metrics: IMetricsSink | None = None,
    with_retry_worker: bool = True,
) -> SagaEngine:
    """Wire up the complete saga engine in one call.

    Every port not passed in falls back to its in-memory adapter; *worker*
    falls back to the simulated collaborators configured by *settings*.

    1. Creates the event recorder and the stage executor (``stage_timeout``).
    2. Creates the dead-letter manager (``max_retries``, ``retry_cooldown``,
       ``retry_batch_size``).
    3. Creates the compensation engine and the orchestrator, and binds the
       orchestrator to the manager for retries and replays.
    4. Creates diagnostics and the boundary service.
    5. Optionally creates a :class:`DeadLetterRetryWorker` polling every
       ``sweep_interval`` seconds. The caller must ``await engine.start()``
       to begin background sweeps.

    Example
    -------
    ::

        engine = bootstrap_saga_engine(worker=HttpStageWorker(base_url))
        await engine.start()
        result = await engine.service.create_order("cust-1", items)
    """
    settings = settings or get_settings()
    if metrics is None:
        metrics = NullMetricsSink()
    if event_log is None:
        event_log = InMemoryEventLog()
    if dedup_store is None:
        dedup_store = InMemoryDedupStore(settings.dedup_retention)
    if orders is None:
        orders = InMemoryOrderRepository()
    if dead_letter_repository is None:
        dead_letter_repository = InMemoryDeadLetterRepository()
    if worker is None:
        worker = simulated_worker(settings)

    # 1. Recorder + executor
    recorder = EventRecorder(event_log, metrics)
    executor = StageExecutor(worker, timeout=settings.stage_timeout, metrics=metrics)

    # 2. Dead letters
    manager = DeadLetterManager(
        dead_letter_repository,
        orders,
        dedup_store=dedup_store,
        metrics=metrics,
        max_retries=settings.max_retries,
        cooldown=settings.retry_cooldown,
        batch_size=settings.retry_batch_size,
    )

    # 3. Compensation + orchestrator
    compensation = CompensationEngine(executor, dedup_store, recorder, manager)
    orchestrator = SagaOrchestrator(
        orders, dedup_store, recorder, executor, compensation, manager
    )
    manager.set_orchestrator(orchestrator)

    # 4. Diagnostics + service
    diagnostics = SagaDiagnostics(
        orders, event_log, stuck_threshold=settings.stuck_threshold
    )
    service = OrderSagaService(orchestrator, manager, diagnostics)

    # 5. Retry worker
    retry_worker: DeadLetterRetryWorker | None = None
    if with_retry_worker:
        retry_worker = DeadLetterRetryWorker(
            manager, poll_interval=settings.sweep_interval
        )

    logger.info(
        "Saga engine bootstrap complete: timeout=%gs, max_retries=%d, sweep=%s",
        settings.stage_timeout,
        settings.max_retries,
        f"{settings.sweep_interval:g}s" if retry_worker else "disabled",
    )

    return SagaEngine(
        service=service,
        orchestrator=orchestrator,
        dead_letters=manager,
        diagnostics=diagnostics,
        settings=settings,
        retry_worker=retry_worker,
    )


async def bootstrap_sqlalchemy_engine(
    engine: AsyncEngine,
    *,
    settings: SagaSettings | None = None,
    worker: IStageWorker | None = None,
    metrics: IMetricsSink | None = None,
    with_retry_worker: bool = True,
) -> SagaEngine:
    """Like :func:`bootstrap_saga_engine`, backed by a SQLAlchemy database.

    Creates the saga tables on *engine* if they do not exist.
    """
    from .adapters.sqlalchemy import (
        SQLAlchemyDeadLetterRepository,
        SQLAlchemyDedupStore,
        SQLAlchemyEventLog,
        SQLAlchemyOrderRepository,
        create_schema,
        create_session_factory,
    )

    settings = settings or get_settings()
    await create_schema(engine)
    factory = create_session_factory(engine)
    return bootstrap_saga_engine(
        settings=settings,
        event_log=SQLAlchemyEventLog(factory),
        dedup_store=SQLAlchemyDedupStore(factory, retention=settings.dedup_retention),
        orders=SQLAlchemyOrderRepository(factory),
        dead_letter_repository=SQLAlchemyDeadLetterRepository(factory),
        worker=worker,
        metrics=metrics,
        with_retry_worker=with_retry_worker,
    )


__all__ = [
    "SagaEngine",
    "bootstrap_saga_engine",
    "bootstrap_sqlalchemy_engine",
    "simulated_worker",
]
