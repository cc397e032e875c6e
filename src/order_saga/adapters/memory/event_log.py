"""InMemoryEventLog — list-backed fake for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ...domain.events import OrderEvent


class InMemoryEventLog:
    """In-memory implementation of ``IEventLog``.

    Stores events in a flat list; ``position`` is the list index.
    """

    def __init__(self) -> None:
        self._events: list[OrderEvent] = []

    async def append(self, event: OrderEvent) -> str:
        stored = event.model_copy(update={"position": len(self._events)})
        self._events.append(stored)
        return stored.id

    async def read_events(self, order_id: str) -> list[OrderEvent]:
        matching = [e for e in self._events if e.order_id == order_id]
        return sorted(matching, key=lambda e: (e.created_at, e.position))

    def all_events(self) -> list[OrderEvent]:
        """Every stored event in append order (test helper)."""
        return list(self._events)
