"""Metrics sinks: no-op, in-process summary, and Prometheus.

Prometheus metrics (``PrometheusMetricsSink``):
  - ``order_saga_step_duration_seconds{step, outcome}``
  - ``order_saga_step_total{step, outcome}``
  - ``order_saga_events_total{event_type, producer}``
  - ``order_saga_dead_letters_total{action}``
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from ..ports.metrics import NullMetricsSink

_logger = logging.getLogger("order_saga.metrics")


def _percentile(sorted_values: list[float], pct: float) -> float:
    # Nearest-rank.
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(sorted_values)))
    return sorted_values[rank - 1]


class InMemoryMetricsSink:
    """Keeps counters and per-step latencies in memory.

    ``summary()`` reports success rates and p50/p95/p99/max latency per
    step. Useful in tests and for a local dashboard.
    """

    def __init__(self, max_samples: int = 1000) -> None:
        self._max_samples = max_samples
        self.step_outcomes: dict[str, dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self.latencies: dict[str, list[float]] = defaultdict(list)
        self.events: dict[str, int] = defaultdict(int)
        self.dead_letters: dict[str, int] = defaultdict(int)

    def record_step(self, step: str, outcome: str, duration: float) -> None:
        self.step_outcomes[step][outcome] += 1
        samples = self.latencies[step]
        samples.append(duration)
        if len(samples) > self._max_samples:
            del samples[0]

    def record_event(self, event_type: str, producer: str) -> None:
        self.events[event_type] += 1

    def record_dead_letter(self, action: str) -> None:
        self.dead_letters[action] += 1

    def summary(self) -> dict[str, Any]:
        steps: dict[str, Any] = {}
        for step, outcomes in self.step_outcomes.items():
            total = sum(outcomes.values())
            ordered = sorted(self.latencies[step])
            steps[step] = {
                "total": total,
                "outcomes": dict(outcomes),
                "success_rate": outcomes.get("success", 0) / total if total else 0.0,
                "p50": _percentile(ordered, 50),
                "p95": _percentile(ordered, 95),
                "p99": _percentile(ordered, 99),
                "max": ordered[-1] if ordered else 0.0,
            }
        return {
            "steps": steps,
            "events": dict(self.events),
            "dead_letters": dict(self.dead_letters),
        }


class PrometheusMetricsSink:
    """Publishes to a prometheus_client registry.

    Pass a fresh ``CollectorRegistry`` in tests; the global registry
    rejects duplicate metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        registry = registry if registry is not None else REGISTRY
        self._step_duration = Histogram(
            "order_saga_step_duration_seconds",
            "Stage executor call duration",
            ["step", "outcome"],
            registry=registry,
        )
        self._step_total = Counter(
            "order_saga_step_total",
            "Stage executor calls",
            ["step", "outcome"],
            registry=registry,
        )
        self._events = Counter(
            "order_saga_events_total",
            "Events appended to the event log",
            ["event_type", "producer"],
            registry=registry,
        )
        self._dead_letters = Counter(
            "order_saga_dead_letters_total",
            "Dead-letter lifecycle transitions",
            ["action"],
            registry=registry,
        )

    def record_step(self, step: str, outcome: str, duration: float) -> None:
        try:
            labels = {"step": step, "outcome": outcome}
            self._step_duration.labels(**labels).observe(duration)
            self._step_total.labels(**labels).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit step metrics", exc_info=True)

    def record_event(self, event_type: str, producer: str) -> None:
        try:
            self._events.labels(event_type=event_type, producer=producer).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit event metrics", exc_info=True)

    def record_dead_letter(self, action: str) -> None:
        try:
            self._dead_letters.labels(action=action).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit dead-letter metrics", exc_info=True)


__all__ = ["InMemoryMetricsSink", "NullMetricsSink", "PrometheusMetricsSink"]
