"""InMemoryOrderRepository — dict of order snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ...domain.order import Order, OrderStatus


class InMemoryOrderRepository:
    """In-memory implementation of ``IOrderRepository``.

    Stores deep copies so callers must ``upsert`` to persist a change,
    the same as with a real database.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}

    async def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order is not None else None

    async def upsert(self, order: Order) -> None:
        self._orders[order.id] = order.model_copy(deep=True)

    async def list_by_status(
        self, statuses: list[OrderStatus], limit: int = 50
    ) -> list[Order]:
        matching = [o for o in self._orders.values() if o.status in statuses]
        matching.sort(key=lambda o: o.updated_at, reverse=True)
        return [o.model_copy(deep=True) for o in matching[:limit]]
