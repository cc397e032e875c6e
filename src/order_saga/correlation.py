"""Correlation ID management: ties log records to one saga attempt."""

from __future__ import annotations

import contextlib
import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

# Each asyncio task sees its own copy.
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_causation_id: ContextVar[str | None] = ContextVar("causation_id", default=None)


def get_correlation_id() -> str | None:
    """Correlation id bound to the running task, if any."""
    return _correlation_id.get()


def get_causation_id() -> str | None:
    """Id of the event that caused the current work, if any."""
    return _causation_id.get()


@contextlib.contextmanager
def correlation_scope(
    correlation_id: str | None, causation_id: str | None = None
) -> Iterator[None]:
    """Bind correlation/causation ids for the duration of the block."""
    corr_token = _correlation_id.set(correlation_id)
    cause_token = _causation_id.set(causation_id)
    try:
        yield
    finally:
        _causation_id.reset(cause_token)
        _correlation_id.reset(corr_token)


class CorrelationLogFilter(logging.Filter):
    """Injects ``correlation_id`` / ``causation_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.causation_id = get_causation_id()
        return True
