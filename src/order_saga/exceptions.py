"""Domain and infrastructure exceptions for the order saga engine."""

from __future__ import annotations


class OrderSagaError(Exception):
    """Root exception for the order saga engine."""


class DomainError(OrderSagaError):
    """Base class for all domain-related errors."""


class NotFoundError(DomainError):
    """Raised when an order or dead-letter entry cannot be found."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with id={entity_id!r} not found")


class InvariantViolationError(DomainError):
    """Raised when an order transition would break a domain invariant."""


class DeadLetterStateError(DomainError):
    """Raised when a dead-letter state transition is not allowed.

    E.g. recording an attempt on a settled entry, max retries exceeded.
    """


class ValidationError(OrderSagaError):
    """Raised when a request is malformed.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class OrderValidationError(ValidationError):
    """Raised synchronously when a create-order request is rejected."""


class EventSchemaError(ValidationError):
    """Raised when an event payload does not match its versioned schema."""


class InfrastructureError(OrderSagaError):
    """Base class for all infrastructure-related errors."""


class StorageError(InfrastructureError):
    """Raised when the persistent store is unavailable or rejects a write.

    Callers on the write path must surface this (retry or abort), never
    drop the write silently.
    """


class StageUnavailableError(InfrastructureError):
    """Raised by stage workers for transport-level problems.

    The stage executor classifies it as ``Unavailable``; no domain decision
    was made.
    """


__all__ = [
    "DeadLetterStateError",
    "DomainError",
    "EventSchemaError",
    "InfrastructureError",
    "InvariantViolationError",
    "NotFoundError",
    "OrderSagaError",
    "OrderValidationError",
    "StageUnavailableError",
    "StorageError",
    "ValidationError",
]
