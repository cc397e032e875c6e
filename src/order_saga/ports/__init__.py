"""Ports (protocols) consumed by the saga core."""

from .dead_letters import IDeadLetterRepository
from .dedup_store import (
    AlreadyProcessed,
    DedupKey,
    IDedupStore,
    Reserved,
    ReservationResult,
)
from .event_log import IEventLog
from .metrics import IMetricsSink, NullMetricsSink
from .order_repository import IOrderRepository
from .stage_worker import IStageWorker

__all__ = [
    "AlreadyProcessed",
    "DedupKey",
    "IDeadLetterRepository",
    "IDedupStore",
    "IEventLog",
    "IMetricsSink",
    "IOrderRepository",
    "IStageWorker",
    "NullMetricsSink",
    "ReservationResult",
    "Reserved",
]
