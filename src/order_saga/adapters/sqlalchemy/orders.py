"""
SQLAlchemy implementation of the order repository.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from ...domain.order import Order, OrderItem
from .models import OrderModel
from .session import SessionFactory, transaction

if TYPE_CHECKING:
    from ...domain.order import OrderStatus


class SQLAlchemyOrderRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def get(self, order_id: str) -> Order | None:
        async with transaction(self._factory) as session:
            model = await session.get(OrderModel, order_id)
            return self.from_model(model) if model is not None else None

    async def upsert(self, order: Order) -> None:
        async with transaction(self._factory) as session:
            await session.merge(self.to_model(order))

    async def list_by_status(
        self, statuses: list[OrderStatus], limit: int = 50
    ) -> list[Order]:
        stmt = (
            select(OrderModel)
            .where(OrderModel.status.in_(statuses))
            .order_by(OrderModel.updated_at.desc())
            .limit(limit)
        )
        async with transaction(self._factory) as session:
            result = await session.execute(stmt)
            return [self.from_model(m) for m in result.scalars().all()]

    @staticmethod
    def to_model(order: Order) -> OrderModel:
        return OrderModel(
            id=order.id,
            customer_ref=order.customer_ref,
            items=[item.model_dump(mode="json") for item in order.items],
            total_amount=order.total_amount,
            status=order.status,
            stage=order.stage,
            correlation_id=order.correlation_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    @staticmethod
    def from_model(model: OrderModel) -> Order:
        return Order(
            id=model.id,
            customer_ref=model.customer_ref,
            items=[OrderItem.model_validate(item) for item in model.items or []],
            total_amount=model.total_amount,
            status=model.status,
            stage=model.stage,
            correlation_id=model.correlation_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
