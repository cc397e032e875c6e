"""Tests for the SQLAlchemy adapters on an in-memory SQLite database."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.pool import StaticPool

from order_saga.adapters.memory import ScriptedStageWorker
from order_saga.adapters.sqlalchemy import (
    SessionFactory,
    SQLAlchemyDeadLetterRepository,
    SQLAlchemyDedupStore,
    SQLAlchemyEventLog,
    SQLAlchemyOrderRepository,
    create_engine,
    create_schema,
    create_session_factory,
)
from order_saga.bootstrap import bootstrap_sqlalchemy_engine
from order_saga.config import SagaSettings
from order_saga.domain.dead_letter import DeadLetterEntry, DeadLetterStatus
from order_saga.domain.events import EventType, OrderEvent, Producer
from order_saga.domain.order import Order, OrderItem, OrderStage, OrderStatus
from order_saga.domain.projection import project
from order_saga.ports.dedup_store import AlreadyProcessed, Reserved
from order_saga.saga.outcomes import DomainFailure

# ═══════════════════════════════════════════════════════════════════════
# Fixtures / helpers
# ═══════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    engine = create_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> SessionFactory:
    return create_session_factory(db_engine)


def _order(order_id: str = "o-1") -> Order:
    return Order.create(
        order_id,
        "cust-1",
        [
            OrderItem(
                product_id="sku-1",
                product_name="Widget",
                quantity=2,
                unit_price=Decimal("10.00"),
            )
        ],
        f"corr_{order_id}",
    )


# ═══════════════════════════════════════════════════════════════════════
# Dedup store
# ═══════════════════════════════════════════════════════════════════════


class TestSQLAlchemyDedupStore:
    @pytest.mark.asyncio
    async def test_reserve_is_exclusive(self, session_factory: SessionFactory) -> None:
        store = SQLAlchemyDedupStore(session_factory)

        first = await store.check_and_reserve("InventoryReserved", "o-1", "corr")
        second = await store.check_and_reserve("InventoryReserved", "o-1", "corr")
        other = await store.check_and_reserve("InventoryReserved", "o-1", "corr-2")

        assert first == Reserved()
        assert isinstance(second, AlreadyProcessed)
        assert second.in_flight
        assert other == Reserved()

    @pytest.mark.asyncio
    async def test_confirm_records_event_id(
        self, session_factory: SessionFactory
    ) -> None:
        store = SQLAlchemyDedupStore(session_factory)
        await store.check_and_reserve("PaymentAuthorized", "o-1", "corr")

        await store.confirm("PaymentAuthorized", "o-1", "corr", "ev-1")
        await store.confirm("PaymentAuthorized", "o-1", "corr", "ev-2")

        key = await store.lookup("PaymentAuthorized", "o-1", "corr")
        assert key is not None
        assert key.event_id == "ev-1"
        again = await store.check_and_reserve("PaymentAuthorized", "o-1", "corr")
        assert again == AlreadyProcessed("ev-1")

    @pytest.mark.asyncio
    async def test_confirm_without_reservation_inserts(
        self, session_factory: SessionFactory
    ) -> None:
        store = SQLAlchemyDedupStore(session_factory)

        await store.confirm("PaymentFailed", "o-1", "corr", "ev-9")

        key = await store.lookup("PaymentFailed", "o-1", "corr")
        assert key is not None
        assert key.event_id == "ev-9"

    @pytest.mark.asyncio
    async def test_release_drops_only_unconfirmed_keys(
        self, session_factory: SessionFactory
    ) -> None:
        store = SQLAlchemyDedupStore(session_factory)
        await store.check_and_reserve("OrderCreated", "o-1", "corr")
        await store.check_and_reserve("OrderRetried", "o-1", "corr")
        await store.confirm("OrderRetried", "o-1", "corr", "ev-1")

        assert await store.release("OrderCreated", "o-1", "corr")
        assert not await store.release("OrderRetried", "o-1", "corr")
        assert await store.lookup("OrderCreated", "o-1", "corr") is None
        assert await store.check_and_reserve("OrderCreated", "o-1", "corr") == (
            Reserved()
        )
        key = await store.lookup("OrderRetried", "o-1", "corr")
        assert key is not None
        assert key.event_id == "ev-1"

    @pytest.mark.asyncio
    async def test_purge_expired(self, session_factory: SessionFactory) -> None:
        store = SQLAlchemyDedupStore(session_factory, retention=timedelta(hours=1))
        await store.check_and_reserve("OrderCreated", "o-1", "corr")

        now = datetime.now(timezone.utc)
        assert await store.purge_expired(now) == 0
        assert await store.purge_expired(now + timedelta(hours=2)) == 1
        assert await store.lookup("OrderCreated", "o-1", "corr") is None


# ═══════════════════════════════════════════════════════════════════════
# Event log and orders
# ═══════════════════════════════════════════════════════════════════════


class TestSQLAlchemyEventLog:
    @pytest.mark.asyncio
    async def test_append_and_read_in_order(
        self, session_factory: SessionFactory
    ) -> None:
        log = SQLAlchemyEventLog(session_factory)
        created_at = datetime.now(timezone.utc)
        first = OrderEvent(
            order_id="o-1",
            type=EventType.PAYMENT_FAILED,
            correlation_id="corr",
            payload={"reason": "declined"},
            produced_by=Producer.PAYMENT,
            created_at=created_at,
        )
        second = OrderEvent(
            order_id="o-1",
            type=EventType.COMPENSATION_STARTED,
            correlation_id="corr",
            causation_id=first.id,
            payload={
                "action": "release_inventory",
                "actions": ["release_inventory"],
                "failed_stage": "PAYMENT",
            },
            produced_by=Producer.COMPENSATION,
            created_at=created_at,
        )
        await log.append(first)
        await log.append(second)
        await log.append(
            OrderEvent(
                order_id="o-2",
                type=EventType.ORDER_CREATED,
                correlation_id="other",
                produced_by=Producer.ORDER,
            )
        )

        events = await log.read_events("o-1")

        assert [e.id for e in events] == [first.id, second.id]
        assert events[1].causation_id == first.id
        assert events[1].payload["actions"] == ["release_inventory"]
        assert events[0].created_at == created_at
        assert events[0].position is not None
        assert events[1].position is not None
        assert events[0].position < events[1].position


class TestSQLAlchemyOrderRepository:
    @pytest.mark.asyncio
    async def test_upsert_and_get(self, session_factory: SessionFactory) -> None:
        repo = SQLAlchemyOrderRepository(session_factory)
        order = _order()
        await repo.upsert(order)

        order.start()
        await repo.upsert(order)
        loaded = await repo.get("o-1")

        assert loaded is not None
        assert loaded.status == OrderStatus.PROCESSING
        assert loaded.stage == OrderStage.INVENTORY
        assert loaded.total_amount == Decimal("20.00")
        assert loaded.items == order.items
        assert loaded.updated_at.tzinfo is not None
        assert await repo.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_by_status(self, session_factory: SessionFactory) -> None:
        repo = SQLAlchemyOrderRepository(session_factory)
        pending = _order("o-1")
        processing = _order("o-2")
        processing.start()
        await repo.upsert(pending)
        await repo.upsert(processing)

        found = await repo.list_by_status([OrderStatus.PROCESSING])

        assert [o.id for o in found] == ["o-2"]


# ═══════════════════════════════════════════════════════════════════════
# Dead letters
# ═══════════════════════════════════════════════════════════════════════


class TestSQLAlchemyDeadLetterRepository:
    def _entry(self, order_id: str = "o-1") -> DeadLetterEntry:
        return DeadLetterEntry(
            order_id=order_id,
            event_type="PaymentFailed",
            stage=OrderStage.PAYMENT,
            error_message="declined",
        )

    @pytest.mark.asyncio
    async def test_eligibility_query(self, session_factory: SessionFactory) -> None:
        repo = SQLAlchemyDeadLetterRepository(session_factory)
        now = datetime.now(timezone.utc)
        fresh = self._entry("o-1")
        cooling = self._entry("o-2")
        cooling.record_attempt(now - timedelta(seconds=10))
        cooled = self._entry("o-3")
        cooled.record_attempt(now - timedelta(seconds=120))
        exhausted = self._entry("o-4")
        for _ in range(3):
            exhausted.record_attempt(now - timedelta(seconds=300))
        resolved = self._entry("o-5")
        resolved.mark_resolved()
        for entry in (fresh, cooling, cooled, exhausted, resolved):
            await repo.add(entry)

        eligible = await repo.list_eligible(now, timedelta(seconds=60))

        assert {e.order_id for e in eligible} == {"o-1", "o-3"}

    @pytest.mark.asyncio
    async def test_round_trip_and_queries(
        self, session_factory: SessionFactory
    ) -> None:
        repo = SQLAlchemyDeadLetterRepository(session_factory)
        entry = self._entry()
        await repo.add(entry)
        entry.record_attempt()
        await repo.add(entry)

        loaded = await repo.get(entry.id)
        assert loaded is not None
        assert loaded.retry_count == 1
        assert loaded.status == DeadLetterStatus.RETRYING
        assert loaded.last_retry_at is not None

        assert [e.id for e in await repo.find_open_for_order("o-1")] == [entry.id]
        assert await repo.find(statuses=[DeadLetterStatus.RESOLVED]) == []
        assert [e.id for e in await repo.find(event_type="PaymentFailed")] == [
            entry.id
        ]


# ═══════════════════════════════════════════════════════════════════════
# Full engine on SQLite
# ═══════════════════════════════════════════════════════════════════════


class TestSQLAlchemyEngine:
    @pytest.mark.asyncio
    async def test_failure_retry_and_recovery(self, db_engine: AsyncEngine) -> None:
        worker = ScriptedStageWorker({"payment": [DomainFailure("Payment declined")]})
        engine = await bootstrap_sqlalchemy_engine(
            db_engine,
            settings=SagaSettings(stage_timeout=1.0),
            worker=worker,
            with_retry_worker=False,
        )
        items = [
            {
                "product_id": "sku-1",
                "product_name": "Widget",
                "quantity": 1,
                "unit_price": "3.00",
            }
        ]

        result = await engine.service.create_order("cust-1", items, "token-1")
        duplicate = await engine.service.create_order("cust-1", items, "token-1")
        assert not duplicate.created

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert project(view.events) == (view.order.status, view.order.stage)

        report = await engine.dead_letters.sweep()
        assert report.resolved == 1

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.COMPLETED
        assert project(view.events) == (OrderStatus.COMPLETED, OrderStage.COMPLETED)
        [entry] = await engine.service.list_dead_letters(order_id=result.order_id)
        assert entry.status == DeadLetterStatus.RESOLVED
