"""IDedupStore — which (event type, order, correlation) effects happened."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class Reserved:
    """The caller now holds the right to produce the effect."""


@dataclass(frozen=True)
class AlreadyProcessed:
    """The effect was already produced (or is in flight).

    ``existing_event_id`` is ``None`` while the holder of the reservation
    has not confirmed it yet.
    """

    existing_event_id: str | None = None

    @property
    def in_flight(self) -> bool:
        return self.existing_event_id is None


ReservationResult = Reserved | AlreadyProcessed


@dataclass(frozen=True)
class DedupKey:
    """Stored dedup row."""

    event_type: str
    order_id: str
    correlation_id: str
    event_id: str | None
    created_at: datetime
    expires_at: datetime


@runtime_checkable
class IDedupStore(Protocol):
    """Protocol for the idempotency (dedup) store.

    ``check_and_reserve`` must be a single atomic check-and-insert against
    a uniqueness constraint on the triple. Storage failures propagate: a
    reservation that cannot be confirmed must abort the stage attempt.
    """

    async def check_and_reserve(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> ReservationResult:
        ...

    async def confirm(
        self, event_type: str, order_id: str, correlation_id: str, event_id: str
    ) -> None:
        """Record the event produced under a reservation (insert-or-ignore)."""
        ...

    async def release(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> bool:
        """Drop an unconfirmed reservation whose effect was never recorded.

        Confirmed keys are left alone. Returns whether a key was removed.
        """
        ...

    async def lookup(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> DedupKey | None:
        """Diagnostic read of a single key."""
        ...

    async def purge_expired(self, now: datetime) -> int:
        """Delete keys whose retention window has passed; return the count."""
        ...
