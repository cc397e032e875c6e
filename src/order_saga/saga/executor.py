"""StageExecutor — one external step under a hard timeout."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from ..ports.metrics import NullMetricsSink
from .outcomes import DomainFailure, StageOutcome, Success, Unavailable

if TYPE_CHECKING:
    from ..ports.metrics import IMetricsSink
    from ..ports.stage_worker import IStageWorker

logger = logging.getLogger("order_saga.executor")

DEFAULT_STAGE_TIMEOUT = 10.0


class StageExecutor:
    """Invokes an :class:`IStageWorker` and classifies what happened.

    * ``Success`` / ``DomainFailure`` returned by the worker pass through.
    * A timeout, or any exception raised by the worker, is ``Unavailable``:
      no domain decision was made, so the attempt is retried and never
      compensated.

    The executor is stateless. Retries, compensation and persistence belong
    to the orchestrator, so tests can swap in a scripted worker.
    """

    def __init__(
        self,
        worker: IStageWorker,
        timeout: float = DEFAULT_STAGE_TIMEOUT,
        metrics: IMetricsSink | None = None,
    ) -> None:
        self._worker = worker
        self._timeout = timeout
        self._metrics = metrics or NullMetricsSink()

    @property
    def timeout(self) -> float:
        return self._timeout

    async def execute(
        self,
        step: str,
        order_id: str,
        correlation_id: str,
        timeout: float | None = None,
    ) -> StageOutcome:
        deadline = self._timeout if timeout is None else timeout
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._worker.invoke(step, order_id, correlation_id),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            outcome: StageOutcome = Unavailable(f"timed out after {deadline:g}s")
        except Exception as exc:  # noqa: BLE001
            outcome = Unavailable(f"{type(exc).__name__}: {exc}")
        else:
            if isinstance(result, (Success, DomainFailure, Unavailable)):
                outcome = result
            else:
                outcome = Unavailable(
                    f"worker returned unexpected result {type(result).__name__}"
                )

        duration = time.perf_counter() - started
        self._metrics.record_step(step, outcome.kind, duration)
        if isinstance(outcome, Unavailable):
            logger.warning(
                "Step %s unavailable for order %s: %s",
                step,
                order_id,
                outcome.cause,
            )
        else:
            logger.debug(
                "Step %s for order %s → %s (%.3fs)",
                step,
                order_id,
                outcome.kind,
                duration,
            )
        return outcome
