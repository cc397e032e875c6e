"""Tests for the saga orchestrator: scenarios, idempotency, compensation."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest

from order_saga.adapters.memory import (
    InMemoryDedupStore,
    InMemoryEventLog,
    InMemoryOrderRepository,
)
from order_saga.bootstrap import bootstrap_saga_engine
from order_saga.domain.dead_letter import DeadLetterStatus
from order_saga.domain.events import EventType
from order_saga.domain.order import OrderStage, OrderStatus
from order_saga.domain.projection import project
from order_saga.exceptions import StageUnavailableError, StorageError
from order_saga.ports.dedup_store import Reserved
from order_saga.saga.orchestrator import (
    DOWNSTREAM_FAILURE_REASON,
    STORAGE_FAILURE_REASON,
)
from order_saga.saga.outcomes import DomainFailure, Success
from order_saga.saga.steps import STAGE_STEPS
from order_saga.service import order_id_for_token

if TYPE_CHECKING:
    from order_saga.adapters.memory import (
        InMemoryDeadLetterRepository,
        ScriptedStageWorker,
    )
    from order_saga.bootstrap import SagaEngine
    from order_saga.config import SagaSettings
    from order_saga.domain.events import OrderEvent

# ═══════════════════════════════════════════════════════════════════════
# Fixtures / helpers
# ═══════════════════════════════════════════════════════════════════════


async def _types(engine: SagaEngine, order_id: str) -> list[EventType]:
    events = await engine.orchestrator.event_log.read_events(order_id)
    return [e.type for e in events]


async def _assert_projection_matches(engine: SagaEngine, order_id: str) -> None:
    view = await engine.service.get_order(order_id)
    assert project(view.events) == (view.order.status, view.order.stage)


class YieldingOrderRepository(InMemoryOrderRepository):
    """Yields to the loop on every read so concurrent callers interleave."""

    async def get(self, order_id: str) -> Any:
        order = await super().get(order_id)
        await asyncio.sleep(0)
        return order


# ═══════════════════════════════════════════════════════════════════════
# Scenarios
# ═══════════════════════════════════════════════════════════════════════


class TestScenarios:
    @pytest.mark.asyncio
    async def test_happy_path_completes(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("payment", Success({"transaction_id": "txn_1"}))
        worker.push("shipping", Success({"tracking_number": "TRACK-1"}))

        result = await engine.service.create_order("cust-1", items)

        assert result.created
        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.COMPLETED
        assert view.order.stage == OrderStage.COMPLETED
        assert [e.type for e in view.events] == [
            EventType.ORDER_CREATED,
            EventType.INVENTORY_RESERVED,
            EventType.PAYMENT_AUTHORIZED,
            EventType.ORDER_SHIPPED,
        ]
        assert {e.correlation_id for e in view.events} == {result.correlation_id}
        assert result.correlation_id == f"corr_{result.order_id}"

        # Every stage event is caused by the one before it.
        for previous, event in zip(view.events, view.events[1:]):
            assert event.causation_id == previous.id

        assert view.events[2].payload["transaction_id"] == "txn_1"
        assert view.events[3].payload["tracking_number"] == "TRACK-1"
        assert await engine.service.list_dead_letters() == []
        await _assert_projection_matches(engine, result.order_id)

    @pytest.mark.asyncio
    async def test_two_item_order_totals_and_completes(
        self, engine: SagaEngine
    ) -> None:
        items = [
            {
                "product_id": "sku-1",
                "product_name": "Widget",
                "quantity": 2,
                "unit_price": "30.00",
            },
            {
                "product_id": "sku-2",
                "product_name": "Gadget",
                "quantity": 1,
                "unit_price": "40.00",
            },
        ]

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        assert view.order.total_amount == Decimal("100.00")
        assert view.order.status == OrderStatus.COMPLETED
        assert [e.type for e in view.events] == [
            EventType.ORDER_CREATED,
            EventType.INVENTORY_RESERVED,
            EventType.PAYMENT_AUTHORIZED,
            EventType.ORDER_SHIPPED,
        ]
        assert view.events[0].payload["total_amount"] == "100.00"
        assert view.events[0].payload["item_count"] == 2

    @pytest.mark.asyncio
    async def test_order_created_payload_has_no_raw_customer_ref(
        self, engine: SagaEngine, items: list
    ) -> None:
        result = await engine.service.create_order("cust-secret", items)
        view = await engine.service.get_order(result.order_id)
        created = view.events[0]
        assert "cust-secret" not in str(created.payload)
        assert created.payload["item_count"] == 2
        assert created.payload["total_amount"] == "25.50"

    @pytest.mark.asyncio
    async def test_payment_declined_releases_inventory(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("payment", DomainFailure("Payment declined"))

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert view.order.stage == OrderStage.PAYMENT
        assert [e.type for e in view.events] == [
            EventType.ORDER_CREATED,
            EventType.INVENTORY_RESERVED,
            EventType.PAYMENT_FAILED,
            EventType.COMPENSATION_STARTED,
            EventType.INVENTORY_RELEASED,
        ]
        assert view.events[2].payload == {"reason": "Payment declined"}
        assert len(worker.calls_for("release_inventory")) == 1
        assert worker.calls_for("shipping") == []

        entries = await engine.service.list_dead_letters(order_id=result.order_id)
        assert len(entries) == 1
        assert entries[0].event_type == "PaymentFailed"
        assert entries[0].status == DeadLetterStatus.PENDING
        assert entries[0].retry_count == 0
        await _assert_projection_matches(engine, result.order_id)

    @pytest.mark.asyncio
    async def test_shipping_failure_refunds_then_releases(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("shipping", DomainFailure("Shipping failed"))

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert view.order.stage == OrderStage.SHIPPING
        assert [e.type for e in view.events][-4:] == [
            EventType.SHIPPING_FAILED,
            EventType.COMPENSATION_STARTED,
            EventType.PAYMENT_REFUNDED,
            EventType.INVENTORY_RELEASED,
        ]
        steps = [call[0] for call in worker.calls]
        assert steps.index("refund_payment") < steps.index("release_inventory")
        await _assert_projection_matches(engine, result.order_id)

    @pytest.mark.asyncio
    async def test_inventory_failure_needs_no_compensation(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("inventory", DomainFailure("Simulated inventory failure"))

        result = await engine.service.create_order("cust-1", items)

        assert await _types(engine, result.order_id) == [
            EventType.ORDER_CREATED,
            EventType.INVENTORY_FAILED,
        ]
        assert worker.calls_for("payment") == []
        assert worker.calls_for("release_inventory") == []


# ═══════════════════════════════════════════════════════════════════════
# Unavailable outcomes
# ═══════════════════════════════════════════════════════════════════════


class TestUnavailable:
    @pytest.mark.asyncio
    async def test_worker_exception_records_order_failed(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("payment", StageUnavailableError("connection refused"))

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert view.order.stage == OrderStage.PAYMENT
        failed = view.events[-1]
        assert failed.type == EventType.ORDER_FAILED
        assert failed.payload["reason"] == DOWNSTREAM_FAILURE_REASON
        assert failed.payload["stage"] == "PAYMENT"
        assert "connection refused" in failed.payload["cause"]
        # Nothing was decided, so nothing is compensated.
        assert EventType.COMPENSATION_STARTED not in [e.type for e in view.events]

        entries = await engine.service.list_dead_letters(order_id=result.order_id)
        assert [e.event_type for e in entries] == ["OrderFailed"]
        await _assert_projection_matches(engine, result.order_id)

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.set_delay("shipping", 5.0)

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert view.order.stage == OrderStage.SHIPPING
        assert view.events[-1].type == EventType.ORDER_FAILED
        assert view.events[-1].payload["cause"] == "timed out after 0.5s"


# ═══════════════════════════════════════════════════════════════════════
# Idempotency
# ═══════════════════════════════════════════════════════════════════════


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_repeated_stage_attempt_is_a_duplicate(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        result = await engine.service.create_order("cust-1", items)
        order = (await engine.service.get_order(result.order_id)).order
        events_before = await _types(engine, result.order_id)

        stage_result = await engine.orchestrator.run_stage(
            order,
            STAGE_STEPS[OrderStage.INVENTORY],
            result.correlation_id,
            None,
        )

        assert stage_result.kind == "duplicate"
        view = await engine.service.get_order(result.order_id)
        assert stage_result.event_id == view.events[1].id
        assert await _types(engine, result.order_id) == events_before
        assert len(worker.calls_for("inventory")) == 1

    @pytest.mark.asyncio
    async def test_start_twice_writes_once(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        result = await engine.service.create_order("cust-1", items)
        order = (await engine.service.get_order(result.order_id)).order

        assert await engine.orchestrator.start(order) is False
        assert (await _types(engine, result.order_id)).count(
            EventType.ORDER_CREATED
        ) == 1
        assert len(worker.calls_for("inventory")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_orders_do_not_interfere(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        results = await asyncio.gather(
            *(engine.service.create_order(f"cust-{i}", items) for i in range(5))
        )
        assert len({r.order_id for r in results}) == 5
        for result in results:
            view = await engine.service.get_order(result.order_id)
            assert view.order.status == OrderStatus.COMPLETED
            assert len(view.events) == 4


# ═══════════════════════════════════════════════════════════════════════
# Retry
# ═══════════════════════════════════════════════════════════════════════


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_resumes_at_failed_stage(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("payment", DomainFailure("Payment declined"))
        result = await engine.service.create_order("cust-1", items)
        failure = (await engine.service.get_order(result.order_id)).events[2]

        attempt = await engine.orchestrator.retry(result.order_id)

        assert attempt.accepted
        assert attempt.correlation_id == f"retry:{failure.id}"
        assert attempt.order is not None
        assert attempt.order.status == OrderStatus.COMPLETED
        # Stages before the failed one are never re-run.
        assert len(worker.calls_for("inventory")) == 1
        assert len(worker.calls_for("payment")) == 2

        view = await engine.service.get_order(result.order_id)
        retried = next(e for e in view.events if e.type == EventType.ORDER_RETRIED)
        assert retried.causation_id == failure.id
        assert retried.payload == {
            "stage": "PAYMENT",
            "previous_failure": "PaymentFailed",
            "previous_failure_id": failure.id,
            "trigger": "manual",
        }
        await _assert_projection_matches(engine, result.order_id)

    @pytest.mark.asyncio
    async def test_retry_rejects_non_failed_orders(
        self, engine: SagaEngine, items: list
    ) -> None:
        result = await engine.service.create_order("cust-1", items)

        attempt = await engine.orchestrator.retry(result.order_id)

        assert not attempt.accepted
        assert attempt.reason is not None
        assert "only FAILED orders can be retried" in attempt.reason

    @pytest.mark.asyncio
    async def test_retry_unknown_order(self, engine: SagaEngine) -> None:
        attempt = await engine.orchestrator.retry("missing")
        assert not attempt.accepted
        assert attempt.reason == "order not found"

    @pytest.mark.asyncio
    async def test_concurrent_retries_of_one_failure_run_once(
        self,
        settings: SagaSettings,
        worker: ScriptedStageWorker,
        event_log: InMemoryEventLog,
        dead_letter_repository: InMemoryDeadLetterRepository,
        items: list,
    ) -> None:
        engine = bootstrap_saga_engine(
            settings=settings,
            event_log=event_log,
            orders=YieldingOrderRepository(),
            dead_letter_repository=dead_letter_repository,
            worker=worker,
            with_retry_worker=False,
        )
        worker.push("payment", DomainFailure("Payment declined"))
        result = await engine.service.create_order("cust-1", items)

        first, second = await asyncio.gather(
            engine.orchestrator.retry(result.order_id, trigger="manual"),
            engine.orchestrator.retry(result.order_id, trigger="automatic"),
        )

        assert sorted([first.accepted, second.accepted]) == [False, True]
        loser = second if first.accepted else first
        assert loser.duplicate
        assert loser.reason == "retry already in progress for this failure"
        assert len(worker.calls_for("payment")) == 2
        assert (await _types(engine, result.order_id)).count(
            EventType.ORDER_RETRIED
        ) == 1

    @pytest.mark.asyncio
    async def test_retry_failing_again_does_not_release_twice(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push(
            "payment", DomainFailure("Payment declined"), DomainFailure("Declined")
        )
        result = await engine.service.create_order("cust-1", items)

        retry = await engine.service.retry_order(result.order_id)

        assert retry.accepted
        assert retry.status == OrderStatus.FAILED
        assert len(worker.calls_for("payment")) == 2
        # The reservation was released once; the second decline has nothing
        # left to undo.
        assert len(worker.calls_for("release_inventory")) == 1
        types = await _types(engine, result.order_id)
        assert types.count(EventType.INVENTORY_RELEASED) == 1
        assert types.count(EventType.COMPENSATION_STARTED) == 1
        assert types.count(EventType.PAYMENT_FAILED) == 2
        await _assert_projection_matches(engine, result.order_id)


# ═══════════════════════════════════════════════════════════════════════
# Storage failures on the write path
# ═══════════════════════════════════════════════════════════════════════


class FlakyEventLog(InMemoryEventLog):
    """Fails the next append of each event type queued in ``failing``."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: list[EventType] = []

    async def append(self, event: OrderEvent) -> str:
        if event.type in self.failing:
            self.failing.remove(event.type)
            raise StorageError(f"could not append {event.type.value}")
        return await super().append(event)


class TestStorageFailures:
    @pytest.fixture
    def flaky_log(self) -> FlakyEventLog:
        return FlakyEventLog()

    @pytest.fixture
    def flaky_engine(
        self,
        settings: SagaSettings,
        worker: ScriptedStageWorker,
        flaky_log: FlakyEventLog,
        dead_letter_repository: InMemoryDeadLetterRepository,
    ) -> SagaEngine:
        return bootstrap_saga_engine(
            settings=settings,
            event_log=flaky_log,
            dead_letter_repository=dead_letter_repository,
            worker=worker,
            with_retry_worker=False,
        )

    @pytest.mark.asyncio
    async def test_unrecorded_order_created_can_be_resubmitted(
        self,
        flaky_engine: SagaEngine,
        flaky_log: FlakyEventLog,
        worker: ScriptedStageWorker,
        items: list,
    ) -> None:
        flaky_log.failing = [EventType.ORDER_CREATED]
        order_id = order_id_for_token("token-1")

        with pytest.raises(StorageError):
            await flaky_engine.service.create_order("cust-1", items, "token-1")

        assert await flaky_engine.orchestrator.orders.get(order_id) is None
        assert worker.calls == []

        result = await flaky_engine.service.create_order("cust-1", items, "token-1")

        assert result.created
        view = await flaky_engine.service.get_order(order_id)
        assert view.order.status == OrderStatus.COMPLETED
        assert [e.type for e in view.events].count(EventType.ORDER_CREATED) == 1

    @pytest.mark.asyncio
    async def test_order_created_without_a_row_is_resumed(
        self,
        flaky_engine: SagaEngine,
        worker: ScriptedStageWorker,
        items: list,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        orders = flaky_engine.orchestrator.orders
        upsert = orders.upsert

        async def unavailable(*args: object, **kwargs: object) -> None:
            raise StorageError("connection lost")

        monkeypatch.setattr(orders, "upsert", unavailable)
        with pytest.raises(StorageError):
            await flaky_engine.service.create_order("cust-1", items, "token-1")
        monkeypatch.setattr(orders, "upsert", upsert)

        result = await flaky_engine.service.create_order("cust-1", items, "token-1")

        assert result.created
        view = await flaky_engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.COMPLETED
        assert [e.type for e in view.events].count(EventType.ORDER_CREATED) == 1
        assert len(worker.calls_for("inventory")) == 1

    @pytest.mark.asyncio
    async def test_unrecorded_stage_success_fails_order_for_the_sweep(
        self,
        flaky_engine: SagaEngine,
        flaky_log: FlakyEventLog,
        worker: ScriptedStageWorker,
        items: list,
    ) -> None:
        flaky_log.failing = [EventType.INVENTORY_RESERVED]

        result = await flaky_engine.service.create_order("cust-1", items)

        view = await flaky_engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert view.order.stage == OrderStage.INVENTORY
        failed = view.events[-1]
        assert failed.type == EventType.ORDER_FAILED
        assert failed.payload["reason"] == STORAGE_FAILURE_REASON
        assert failed.payload["stage"] == "INVENTORY"
        [entry] = await flaky_engine.service.list_dead_letters(
            order_id=result.order_id
        )
        assert entry.event_type == "OrderFailed"
        assert entry.status == DeadLetterStatus.PENDING
        await _assert_projection_matches(flaky_engine, result.order_id)

        report = await flaky_engine.dead_letters.sweep()

        assert report.resolved == 1
        view = await flaky_engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.COMPLETED
        assert len(worker.calls_for("inventory")) == 2
        await _assert_projection_matches(flaky_engine, result.order_id)

    @pytest.mark.asyncio
    async def test_unrecorded_failure_can_still_be_retried(
        self,
        flaky_engine: SagaEngine,
        flaky_log: FlakyEventLog,
        items: list,
    ) -> None:
        flaky_log.failing = [EventType.INVENTORY_RESERVED, EventType.ORDER_FAILED]

        result = await flaky_engine.service.create_order("cust-1", items)

        view = await flaky_engine.service.get_order(result.order_id)
        assert view.order.status == OrderStatus.FAILED
        assert [e.type for e in view.events] == [EventType.ORDER_CREATED]
        [entry] = await flaky_engine.service.list_dead_letters(
            order_id=result.order_id
        )
        assert entry.error_message.startswith(STORAGE_FAILURE_REASON)

        retry = await flaky_engine.service.retry_order(result.order_id)

        assert retry.accepted
        assert retry.correlation_id == f"retry:{result.correlation_id}:INVENTORY"
        assert retry.status == OrderStatus.COMPLETED
        view = await flaky_engine.service.get_order(result.order_id)
        retried = view.events[1]
        assert retried.type == EventType.ORDER_RETRIED
        assert retried.payload["previous_failure"] == "unrecorded"
        assert retried.payload["previous_failure_id"] is None
        [entry] = await flaky_engine.service.list_dead_letters(
            order_id=result.order_id
        )
        assert entry.status == DeadLetterStatus.RESOLVED
        await _assert_projection_matches(flaky_engine, result.order_id)

    @pytest.mark.asyncio
    async def test_unrecorded_retry_releases_its_reservation(
        self,
        flaky_engine: SagaEngine,
        flaky_log: FlakyEventLog,
        worker: ScriptedStageWorker,
        items: list,
    ) -> None:
        worker.push("payment", DomainFailure("Payment declined"))
        result = await flaky_engine.service.create_order("cust-1", items)
        flaky_log.failing = [EventType.ORDER_RETRIED]

        first = await flaky_engine.service.retry_order(result.order_id)
        second = await flaky_engine.service.retry_order(result.order_id)

        assert not first.accepted
        assert first.reason == "could not append OrderRetried"
        assert second.accepted
        assert second.status == OrderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_release_keeps_confirmed_keys(self) -> None:
        store = InMemoryDedupStore()
        await store.check_and_reserve("OrderCreated", "o-1", "corr")
        await store.check_and_reserve("OrderRetried", "o-1", "corr")
        await store.confirm("OrderRetried", "o-1", "corr", "ev-1")

        assert await store.release("OrderCreated", "o-1", "corr") is True
        assert await store.release("OrderRetried", "o-1", "corr") is False
        assert await store.release("OrderShipped", "o-1", "corr") is False
        assert await store.lookup("OrderCreated", "o-1", "corr") is None
        assert await store.check_and_reserve("OrderCreated", "o-1", "corr") == (
            Reserved()
        )
        assert len(store) == 2


# ═══════════════════════════════════════════════════════════════════════
# Compensation failures
# ═══════════════════════════════════════════════════════════════════════


class TestCompensationFailure:
    @pytest.mark.asyncio
    async def test_failed_compensation_is_dead_lettered(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("shipping", DomainFailure("Shipping failed"))
        worker.push("refund_payment", DomainFailure("Refund rejected"))

        result = await engine.service.create_order("cust-1", items)

        view = await engine.service.get_order(result.order_id)
        failed = view.events[-1]
        assert failed.type == EventType.COMPENSATION_FAILED
        assert failed.payload == {
            "action": "refund_payment",
            "reason": "Refund rejected",
            "remaining_actions": ["refund_payment", "release_inventory"],
        }
        # The run stops at the first failing action.
        assert worker.calls_for("release_inventory") == []

        compensation = await engine.service.list_dead_letters(
            event_type="CompensationFailed"
        )
        assert len(compensation) == 1
        assert compensation[0].status == DeadLetterStatus.PERMANENTLY_FAILED
        assert compensation[0].max_retries == 0

        stage_entries = await engine.service.list_dead_letters(
            event_type="ShippingFailed"
        )
        assert [e.status for e in stage_entries] == [DeadLetterStatus.PENDING]

    @pytest.mark.asyncio
    async def test_replay_finishes_remaining_compensation(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("shipping", DomainFailure("Shipping failed"))
        worker.push("refund_payment", DomainFailure("Refund rejected"))
        result = await engine.service.create_order("cust-1", items)
        [entry] = await engine.service.list_dead_letters(
            event_type="CompensationFailed"
        )

        replay = await engine.service.replay_dead_letter(entry.id)

        assert replay.accepted
        assert replay.status == DeadLetterStatus.REPLAYED
        types = await _types(engine, result.order_id)
        assert types[-2:] == [EventType.PAYMENT_REFUNDED, EventType.INVENTORY_RELEASED]
        assert len(worker.calls_for("refund_payment")) == 2
        assert len(worker.calls_for("release_inventory")) == 1

        again = await engine.service.replay_dead_letter(entry.id)
        assert again.already_settled
        assert len(worker.calls_for("refund_payment")) == 2

    @pytest.mark.asyncio
    async def test_replay_that_fails_again_keeps_entry_open_for_operator(
        self, engine: SagaEngine, worker: ScriptedStageWorker, items: list
    ) -> None:
        worker.push("payment", DomainFailure("Payment declined"))
        worker.push(
            "release_inventory",
            DomainFailure("warehouse offline"),
            DomainFailure("warehouse still offline"),
        )
        result = await engine.service.create_order("cust-1", items)
        [entry] = await engine.service.list_dead_letters(
            event_type="CompensationFailed"
        )

        first = await engine.service.replay_dead_letter(entry.id)
        assert first.accepted
        assert first.reason == "compensation release_inventory failed again"
        assert first.status == DeadLetterStatus.PERMANENTLY_FAILED

        second = await engine.service.replay_dead_letter(entry.id)
        assert second.status == DeadLetterStatus.REPLAYED
        assert len(worker.calls_for("release_inventory")) == 3
        assert (await _types(engine, result.order_id))[-1] == (
            EventType.INVENTORY_RELEASED
        )
