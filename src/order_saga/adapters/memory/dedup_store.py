"""InMemoryDedupStore — dict-backed idempotency store."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone

from ...ports.dedup_store import (
    AlreadyProcessed,
    DedupKey,
    Reserved,
    ReservationResult,
)

_Triple = tuple[str, str, str]


class InMemoryDedupStore:
    """In-memory implementation of ``IDedupStore``.

    The membership test and the insert in :meth:`check_and_reserve` run
    without an ``await`` in between, so on one event loop they are atomic.
    """

    def __init__(self, retention: timedelta = timedelta(hours=24)) -> None:
        self._retention = retention
        self._keys: dict[_Triple, DedupKey] = {}

    def _new_key(self, triple: _Triple, event_id: str | None) -> DedupKey:
        now = datetime.now(timezone.utc)
        return DedupKey(
            event_type=triple[0],
            order_id=triple[1],
            correlation_id=triple[2],
            event_id=event_id,
            created_at=now,
            expires_at=now + self._retention,
        )

    async def check_and_reserve(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> ReservationResult:
        triple = (event_type, order_id, correlation_id)
        existing = self._keys.get(triple)
        if existing is not None:
            return AlreadyProcessed(existing.event_id)
        self._keys[triple] = self._new_key(triple, None)
        return Reserved()

    async def confirm(
        self, event_type: str, order_id: str, correlation_id: str, event_id: str
    ) -> None:
        triple = (event_type, order_id, correlation_id)
        existing = self._keys.get(triple)
        if existing is None:
            self._keys[triple] = self._new_key(triple, event_id)
        elif existing.event_id is None:
            self._keys[triple] = dataclasses.replace(existing, event_id=event_id)

    async def release(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> bool:
        triple = (event_type, order_id, correlation_id)
        existing = self._keys.get(triple)
        if existing is None or existing.event_id is not None:
            return False
        del self._keys[triple]
        return True

    async def lookup(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> DedupKey | None:
        return self._keys.get((event_type, order_id, correlation_id))

    async def purge_expired(self, now: datetime) -> int:
        expired = [k for k, v in self._keys.items() if v.expires_at <= now]
        for triple in expired:
            del self._keys[triple]
        return len(expired)

    def __len__(self) -> int:
        return len(self._keys)
