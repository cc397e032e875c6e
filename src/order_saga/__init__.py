"""order-saga — saga orchestration for inventory → payment → shipping."""

from .bootstrap import (
    SagaEngine,
    bootstrap_saga_engine,
    bootstrap_sqlalchemy_engine,
    simulated_worker,
)
from .config import SagaSettings, get_settings
from .domain import (
    DeadLetterEntry,
    DeadLetterStatus,
    EventType,
    Order,
    OrderEvent,
    OrderItem,
    OrderStage,
    OrderStatus,
    Producer,
)
from .exceptions import (
    DeadLetterStateError,
    DomainError,
    EventSchemaError,
    InfrastructureError,
    InvariantViolationError,
    NotFoundError,
    OrderSagaError,
    OrderValidationError,
    StageUnavailableError,
    StorageError,
    ValidationError,
)
from .saga import (
    Diagnosis,
    DomainFailure,
    ReplayOutcome,
    SweepReport,
    Success,
    Unavailable,
)
from .service import (
    CreateOrderResult,
    OrderSagaService,
    OrderView,
    ReplayResult,
    RetryResult,
)
from .structured_logging import JsonFormatter, configure_logging

__version__ = "0.1.0"

__all__ = [
    "CreateOrderResult",
    "DeadLetterEntry",
    "DeadLetterStateError",
    "DeadLetterStatus",
    "Diagnosis",
    "DomainError",
    "DomainFailure",
    "EventSchemaError",
    "EventType",
    "InfrastructureError",
    "InvariantViolationError",
    "JsonFormatter",
    "NotFoundError",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderSagaError",
    "OrderSagaService",
    "OrderStage",
    "OrderStatus",
    "OrderValidationError",
    "OrderView",
    "Producer",
    "ReplayOutcome",
    "ReplayResult",
    "RetryResult",
    "SagaEngine",
    "SagaSettings",
    "StageUnavailableError",
    "StorageError",
    "Success",
    "SweepReport",
    "Unavailable",
    "ValidationError",
    "bootstrap_saga_engine",
    "bootstrap_sqlalchemy_engine",
    "configure_logging",
    "get_settings",
    "simulated_worker",
]
