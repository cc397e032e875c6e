"""IOrderRepository — current mutable projection of each order."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.order import Order, OrderStatus


@runtime_checkable
class IOrderRepository(Protocol):
    async def get(self, order_id: str) -> Order | None:
        ...

    async def upsert(self, order: Order) -> None:
        """Insert or replace the order row; raises ``StorageError``."""
        ...

    async def list_by_status(
        self, statuses: list[OrderStatus], limit: int = 50
    ) -> list[Order]:
        """Orders in any of *statuses*, most recently updated first."""
        ...
