"""IEventLog — append-only, ordered record of everything that happened."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.events import OrderEvent


@runtime_checkable
class IEventLog(Protocol):
    """Protocol for the event log.

    No updates and no deletes. ``append`` fails only when the store is
    unavailable (``StorageError``); callers must retry or abort, never
    drop the event.
    """

    async def append(self, event: OrderEvent) -> str:
        """Append *event* and return its id."""
        ...

    async def read_events(self, order_id: str) -> list[OrderEvent]:
        """Return events for an order ordered by ``created_at``, then
        insertion order."""
        ...
