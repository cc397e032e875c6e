"""IMetricsSink — observability capability injected into the saga."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IMetricsSink(Protocol):
    """Receives counters and timings; implementations must never raise."""

    def record_step(self, step: str, outcome: str, duration: float) -> None:
        """One stage executor call: *outcome* is ``success``,
        ``domain_failure`` or ``unavailable``; *duration* in seconds."""
        ...

    def record_event(self, event_type: str, producer: str) -> None:
        """One event appended to the log."""
        ...

    def record_dead_letter(self, action: str) -> None:
        """Dead-letter lifecycle: ``enqueued``, ``retried``, ``resolved``,
        ``permanently_failed``, ``replayed``."""
        ...


class NullMetricsSink:
    """Default sink: discards everything."""

    def record_step(self, step: str, outcome: str, duration: float) -> None:
        pass

    def record_event(self, event_type: str, producer: str) -> None:
        pass

    def record_dead_letter(self, action: str) -> None:
        pass
