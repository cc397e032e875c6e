"""ScriptedStageWorker — deterministic outcome sequences for tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import TYPE_CHECKING, Union

from ...saga.outcomes import DomainFailure, Success

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

ScriptItem = Union[Success, DomainFailure, BaseException]


class ScriptedStageWorker:
    """Returns (or raises) pre-programmed outcomes per step.

    ``script`` maps a step name to a sequence consumed one item per call;
    exceptions in the sequence are raised. When a step's sequence is
    exhausted the worker returns *default*. ``delays`` makes a step sleep
    first, which lets tests drive the executor's timeout.

    Every call is recorded in :attr:`calls` as ``(step, order_id,
    correlation_id)``.
    """

    def __init__(
        self,
        script: Mapping[str, Iterable[ScriptItem]] | None = None,
        default: Success | DomainFailure | None = None,
        delays: Mapping[str, float] | None = None,
    ) -> None:
        self._script: dict[str, deque[ScriptItem]] = defaultdict(deque)
        for step, items in (script or {}).items():
            self._script[step].extend(items)
        self._default = default if default is not None else Success()
        self._delays = dict(delays or {})
        self.calls: list[tuple[str, str, str]] = []

    def push(self, step: str, *items: ScriptItem) -> None:
        """Queue more outcomes for *step*."""
        self._script[step].extend(items)

    def set_delay(self, step: str, seconds: float) -> None:
        self._delays[step] = seconds

    def calls_for(self, step: str) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == step]

    async def invoke(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure:
        self.calls.append((step, order_id, correlation_id))
        delay = self._delays.get(step)
        if delay:
            await asyncio.sleep(delay)
        queue = self._script[step]
        item = queue.popleft() if queue else self._default
        if isinstance(item, BaseException):
            raise item
        return item
