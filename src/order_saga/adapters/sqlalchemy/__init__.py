"""SQLAlchemy (async) adapters for the saga ports."""

from .dead_letters import SQLAlchemyDeadLetterRepository
from .dedup_store import SQLAlchemyDedupStore
from .event_log import SQLAlchemyEventLog
from .models import (
    Base,
    DeadLetterModel,
    DedupKeyModel,
    OrderEventModel,
    OrderModel,
)
from .orders import SQLAlchemyOrderRepository
from .session import (
    SessionFactory,
    create_engine,
    create_schema,
    create_session_factory,
    transaction,
)

__all__ = [
    "Base",
    "DeadLetterModel",
    "DedupKeyModel",
    "OrderEventModel",
    "OrderModel",
    "SQLAlchemyDeadLetterRepository",
    "SQLAlchemyDedupStore",
    "SQLAlchemyEventLog",
    "SQLAlchemyOrderRepository",
    "SessionFactory",
    "create_engine",
    "create_schema",
    "create_session_factory",
    "transaction",
]
