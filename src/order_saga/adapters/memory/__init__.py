"""In-memory adapters for tests and local runs."""

from .dead_letters import InMemoryDeadLetterRepository
from .dedup_store import InMemoryDedupStore
from .event_log import InMemoryEventLog
from .orders import InMemoryOrderRepository
from .workers import ScriptedStageWorker

__all__ = [
    "InMemoryDeadLetterRepository",
    "InMemoryDedupStore",
    "InMemoryEventLog",
    "InMemoryOrderRepository",
    "ScriptedStageWorker",
]
