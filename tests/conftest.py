from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from order_saga.adapters.memory import (
    InMemoryDeadLetterRepository,
    InMemoryDedupStore,
    InMemoryEventLog,
    InMemoryOrderRepository,
    ScriptedStageWorker,
)
from order_saga.adapters.metrics import InMemoryMetricsSink
from order_saga.bootstrap import SagaEngine, bootstrap_saga_engine
from order_saga.config import SagaSettings

ITEMS: list[dict[str, Any]] = [
    {
        "product_id": "sku-1",
        "product_name": "Widget",
        "quantity": 2,
        "unit_price": "10.00",
    },
    {
        "product_id": "sku-2",
        "product_name": "Gadget",
        "quantity": 1,
        "unit_price": "5.50",
    },
]


@pytest.fixture
def settings() -> SagaSettings:
    return SagaSettings(
        stage_timeout=0.5,
        max_retries=3,
        retry_cooldown=timedelta(seconds=60),
        retry_batch_size=10,
        sweep_interval=60.0,
        stuck_threshold=timedelta(seconds=30),
    )


@pytest.fixture
def worker() -> ScriptedStageWorker:
    return ScriptedStageWorker()


@pytest.fixture
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog()


@pytest.fixture
def dedup_store() -> InMemoryDedupStore:
    return InMemoryDedupStore()


@pytest.fixture
def orders() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def dead_letter_repository() -> InMemoryDeadLetterRepository:
    return InMemoryDeadLetterRepository()


@pytest.fixture
def metrics() -> InMemoryMetricsSink:
    return InMemoryMetricsSink()


@pytest.fixture
def engine(
    settings: SagaSettings,
    worker: ScriptedStageWorker,
    event_log: InMemoryEventLog,
    dedup_store: InMemoryDedupStore,
    orders: InMemoryOrderRepository,
    dead_letter_repository: InMemoryDeadLetterRepository,
    metrics: InMemoryMetricsSink,
) -> SagaEngine:
    return bootstrap_saga_engine(
        settings=settings,
        event_log=event_log,
        dedup_store=dedup_store,
        orders=orders,
        dead_letter_repository=dead_letter_repository,
        worker=worker,
        metrics=metrics,
        with_retry_worker=False,
    )


@pytest.fixture
def items() -> list[dict[str, Any]]:
    return [dict(item) for item in ITEMS]
