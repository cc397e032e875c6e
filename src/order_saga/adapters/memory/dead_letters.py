"""InMemoryDeadLetterRepository — in-memory implementation for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...domain.dead_letter import OPEN_STATUSES

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from ...domain.dead_letter import DeadLetterEntry, DeadLetterStatus


class InMemoryDeadLetterRepository:
    """In-memory implementation of ``IDeadLetterRepository``."""

    def __init__(self) -> None:
        self._entries: dict[str, DeadLetterEntry] = {}

    async def add(self, entry: DeadLetterEntry) -> str:
        """Store or update an entry."""
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry.id

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry is not None else None

    async def list_eligible(
        self,
        now: datetime,
        cooldown: timedelta,
        limit: int = 10,
        max_retries: int | None = None,
    ) -> list[DeadLetterEntry]:
        eligible = [
            e
            for e in self._entries.values()
            if e.is_eligible(now, cooldown)
            and (max_retries is None or e.retry_count < max_retries)
        ]
        eligible.sort(key=lambda e: e.created_at)
        return [e.model_copy(deep=True) for e in eligible[:limit]]

    async def find_open_for_order(self, order_id: str) -> list[DeadLetterEntry]:
        matching = [
            e
            for e in self._entries.values()
            if e.order_id == order_id and e.status in OPEN_STATUSES
        ]
        matching.sort(key=lambda e: e.created_at)
        return [e.model_copy(deep=True) for e in matching]

    async def find(
        self,
        statuses: list[DeadLetterStatus] | None = None,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterEntry]:
        matching = [
            e
            for e in self._entries.values()
            if (statuses is None or e.status in statuses)
            and (order_id is None or e.order_id == order_id)
            and (event_type is None or e.event_type == event_type)
        ]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in matching[:limit]]
