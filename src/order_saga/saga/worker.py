"""DeadLetterRetryWorker — periodic background retry sweep."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .retry import DeadLetterManager, SweepReport

logger = logging.getLogger("order_saga.retry")


class DeadLetterRetryWorker:
    """Runs :meth:`DeadLetterManager.sweep` on a schedule.

    Uses trigger + polling fallback. Call :meth:`trigger` to wake
    immediately (e.g. after a burst of failures); otherwise runs every
    ``poll_interval`` seconds. Each cycle also purges expired dedup keys.
    The sweep runs in its own task and never blocks the orchestrator.
    """

    def __init__(
        self,
        manager: DeadLetterManager,
        poll_interval: float = 60.0,
    ) -> None:
        self._manager = manager
        self._poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def trigger(self) -> None:
        """Wake the worker immediately."""
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "DeadLetterRetryWorker started (poll_interval=%.1fs)",
            self._poll_interval,
        )

    async def stop(self) -> None:
        self._running = False
        self._trigger.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
            self._task = None
        logger.info("DeadLetterRetryWorker stopped")

    async def run_once(self) -> SweepReport:
        """Execute a single cycle (useful in tests)."""
        report = await self._manager.sweep()
        await self._manager.purge_dedup_keys()
        return report

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._trigger.wait(), timeout=self._poll_interval
                )
            self._trigger.clear()
            if not self._running:
                break
            try:
                await self.run_once()
            except Exception:
                logger.exception("DeadLetterRetryWorker error")
