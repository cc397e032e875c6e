"""DeadLetterEntry — durable record of a failed stage attempt."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import DeadLetterStateError
from .order import OrderStage


class DeadLetterStatus(str, Enum):
    """Lifecycle states for a dead-letter entry."""

    PENDING = "PENDING"
    RETRYING = "RETRYING"
    PERMANENTLY_FAILED = "PERMANENTLY_FAILED"
    RESOLVED = "RESOLVED"
    REPLAYED = "REPLAYED"


#: Entries the automatic sweep may still pick up.
OPEN_STATUSES = frozenset({DeadLetterStatus.PENDING, DeadLetterStatus.RETRYING})

#: Entries that are done; replaying them is a no-op.
SETTLED_STATUSES = frozenset({DeadLetterStatus.RESOLVED, DeadLetterStatus.REPLAYED})

COMPENSATION_FAILED = "CompensationFailed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeadLetterEntry(BaseModel):
    """One terminally-failed or not-yet-successful stage attempt.

    Status transitions::

        PENDING | RETRYING        → RETRYING           (record_attempt)
        PENDING | RETRYING        → PERMANENTLY_FAILED (mark_permanently_failed)
        PENDING | RETRYING        → RESOLVED           (mark_resolved)
        any unsettled             → REPLAYED           (mark_replayed)

    ``retry_count`` never exceeds ``max_retries``.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    event_type: str
    stage: OrderStage
    correlation_id: str | None = None
    error_message: str = ""
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    status: DeadLetterStatus = DeadLetterStatus.PENDING
    last_retry_at: datetime | None = None
    replayed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    # -- helpers ----------------------------------------------------------

    def _touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or _utcnow()

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @property
    def is_compensation(self) -> bool:
        return self.event_type == COMPENSATION_FAILED

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_eligible(self, now: datetime, cooldown: timedelta) -> bool:
        """Whether the automatic sweep may attempt this entry at *now*."""
        if not self.is_open or self.retries_exhausted:
            return False
        if self.last_retry_at is None:
            return True
        last = self.last_retry_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return now - last >= cooldown

    # -- transitions ------------------------------------------------------

    def record_attempt(self, now: datetime | None = None) -> None:
        """Count one retry attempt: ``retry_count += 1``, stamp ``last_retry_at``."""
        if not self.is_open:
            raise DeadLetterStateError(
                f"Cannot retry dead letter in {self.status.value} state"
            )
        if self.retries_exhausted:
            raise DeadLetterStateError(f"Max retries ({self.max_retries}) exceeded")
        now = now or _utcnow()
        self.retry_count += 1
        self.last_retry_at = now
        self.status = DeadLetterStatus.RETRYING
        self._touch(now)

    def record_failure(
        self,
        event_type: str,
        error_message: str,
        stage: OrderStage | None = None,
    ) -> None:
        """Refresh an open entry after the same order failed again."""
        if not self.is_open:
            raise DeadLetterStateError(
                f"Cannot update dead letter in {self.status.value} state"
            )
        self.event_type = event_type
        self.error_message = error_message
        if stage is not None:
            self.stage = stage
        self._touch()

    def note_error(self, error_message: str) -> None:
        """Keep the latest error on an unsettled entry without moving it."""
        if self.is_settled:
            raise DeadLetterStateError(
                f"Cannot update dead letter in {self.status.value} state"
            )
        self.error_message = error_message
        self._touch()

    def mark_permanently_failed(self) -> None:
        if not self.is_open:
            raise DeadLetterStateError(
                f"Cannot fail dead letter in {self.status.value} state"
            )
        self.status = DeadLetterStatus.PERMANENTLY_FAILED
        self._touch()

    def mark_resolved(self) -> None:
        if not self.is_open:
            raise DeadLetterStateError(
                f"Cannot resolve dead letter in {self.status.value} state"
            )
        self.status = DeadLetterStatus.RESOLVED
        self._touch()

    def mark_replayed(self, now: datetime | None = None) -> None:
        if self.is_settled:
            raise DeadLetterStateError(
                f"Cannot replay dead letter in {self.status.value} state"
            )
        now = now or _utcnow()
        self.status = DeadLetterStatus.REPLAYED
        self.replayed_at = now
        self._touch(now)
