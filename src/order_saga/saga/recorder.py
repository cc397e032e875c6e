"""EventRecorder — validate, append and count one event."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..domain.events import OrderEvent
from ..domain.payloads import current_schema_version, validate_payload
from ..ports.metrics import NullMetricsSink

if TYPE_CHECKING:
    from ..domain.events import EventType, Producer
    from ..ports.event_log import IEventLog
    from ..ports.metrics import IMetricsSink

logger = logging.getLogger("order_saga.events")


class EventRecorder:
    """Single write path for domain facts.

    Payloads are validated against their current schema before the append;
    a ``StorageError`` from the log propagates to the caller.
    """

    def __init__(
        self, event_log: IEventLog, metrics: IMetricsSink | None = None
    ) -> None:
        self._log = event_log
        self._metrics = metrics or NullMetricsSink()

    @property
    def event_log(self) -> IEventLog:
        return self._log

    async def record(
        self,
        order_id: str,
        event_type: EventType,
        payload: dict[str, Any],
        *,
        correlation_id: str,
        causation_id: str | None,
        produced_by: Producer,
    ) -> OrderEvent:
        version = current_schema_version(event_type)
        event = OrderEvent(
            order_id=order_id,
            type=event_type,
            correlation_id=correlation_id,
            causation_id=causation_id,
            schema_version=version,
            payload=validate_payload(event_type, payload, version),
            produced_by=produced_by,
        )
        await self._log.append(event)
        self._metrics.record_event(event_type.value, produced_by.value)
        logger.info(
            "%s appended for order %s (event=%s, cause=%s)",
            event_type.value,
            order_id,
            event.id,
            causation_id,
        )
        return event
