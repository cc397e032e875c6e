"""Saga core: stage execution, orchestration, compensation and retries."""

from .compensation import CompensationEngine, CompensationResult
from .diagnostics import Diagnosis, SagaDiagnostics
from .executor import StageExecutor
from .orchestrator import RetryAttempt, SagaOrchestrator, StageResult
from .outcomes import DomainFailure, StageOutcome, Success, Unavailable
from .recorder import EventRecorder
from .retry import DeadLetterManager, ReplayOutcome, SweepReport
from .worker import DeadLetterRetryWorker

__all__ = [
    "CompensationEngine",
    "CompensationResult",
    "DeadLetterManager",
    "DeadLetterRetryWorker",
    "Diagnosis",
    "DomainFailure",
    "EventRecorder",
    "ReplayOutcome",
    "RetryAttempt",
    "SagaDiagnostics",
    "SagaOrchestrator",
    "StageExecutor",
    "StageOutcome",
    "StageResult",
    "Success",
    "SweepReport",
    "Unavailable",
]
