"""Outcome of one stage execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Success:
    """The worker performed the step."""

    payload: dict[str, Any] = field(default_factory=dict)

    kind = "success"


@dataclass(frozen=True)
class DomainFailure:
    """The worker made a business decision against the step (e.g. declined)."""

    reason: str

    kind = "domain_failure"


@dataclass(frozen=True)
class Unavailable:
    """No decision was made: timeout, connection error, bad response."""

    cause: str

    kind = "unavailable"


StageOutcome = Success | DomainFailure | Unavailable
