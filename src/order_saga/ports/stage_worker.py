"""IStageWorker — the external operation behind one saga step."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..saga.outcomes import DomainFailure, Success


@runtime_checkable
class IStageWorker(Protocol):
    """Performs a step (``inventory``, ``payment``, ``shipping``,
    ``release_inventory``, ``refund_payment``) for an order.

    Returns ``Success`` or ``DomainFailure``. Transport problems are
    raised (e.g. ``StageUnavailableError``); the caller imposes the
    deadline.
    """

    async def invoke(
        self, step: str, order_id: str, correlation_id: str
    ) -> Success | DomainFailure:
        ...
