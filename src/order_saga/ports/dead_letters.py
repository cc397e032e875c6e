"""IDeadLetterRepository — persistence port for dead-letter entries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from ..domain.dead_letter import DeadLetterEntry, DeadLetterStatus


@runtime_checkable
class IDeadLetterRepository(Protocol):
    """Repository interface for dead-letter entries.

    Operational queries (used by the retry sweep):
        - ``list_eligible``: open entries below their retry budget whose
          cooldown has elapsed, oldest first.
        - ``find_open_for_order``: open entries for an order.

    Administrative queries (used by operators):
        - ``find``: filtered listing by status / order / event type.
    """

    async def add(self, entry: DeadLetterEntry) -> str:
        """Insert or update an entry."""
        ...

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        ...

    async def list_eligible(
        self,
        now: datetime,
        cooldown: timedelta,
        limit: int = 10,
        max_retries: int | None = None,
    ) -> list[DeadLetterEntry]:
        """Select entries with status PENDING|RETRYING, ``retry_count <
        max_retries`` (the entry's own budget, further capped by
        *max_retries* when given) and ``now - last_retry_at >= cooldown``
        (never-retried entries qualify), oldest first."""
        ...

    async def find_open_for_order(self, order_id: str) -> list[DeadLetterEntry]:
        """PENDING|RETRYING entries for *order_id*, oldest first."""
        ...

    async def find(
        self,
        statuses: list[DeadLetterStatus] | None = None,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterEntry]:
        """Filtered listing, newest first."""
        ...
