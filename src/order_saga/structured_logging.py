"""JSON log entries with correlation context."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .correlation import CorrelationLogFilter

if TYPE_CHECKING:
    from .config import SagaSettings

# Attributes every LogRecord carries; anything else came in via ``extra=``.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    | {"message", "asctime", "correlation_id", "causation_id"}
)


class JsonFormatter(logging.Formatter):
    """Renders one JSON object per record: timestamp, level, logger, message,
    correlation/causation ids, any ``extra`` fields and the exception."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "causation_id": getattr(record, "causation_id", None),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            exc_type, exc, _tb = record.exc_info
            entry["error"] = {
                "name": exc_type.__name__ if exc_type else None,
                "message": str(exc),
                "stack": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


def configure_logging(settings: SagaSettings) -> logging.Handler:
    """Attach a stream handler to the ``order_saga`` logger tree."""
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationLogFilter())
    if settings.log_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s "
                "[corr=%(correlation_id)s] %(message)s"
            )
        )
    root = logging.getLogger("order_saga")
    root.setLevel(settings.log_level.upper())
    root.addHandler(handler)
    return handler
