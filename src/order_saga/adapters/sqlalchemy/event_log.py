"""
SQLAlchemy implementation of the event log.

``position`` is autoincremented by the database, giving a stable insertion
order to break ``created_at`` ties.
"""

from __future__ import annotations

from sqlalchemy import select

from ...domain.events import EventType, OrderEvent, Producer
from .models import OrderEventModel
from .session import SessionFactory, transaction


class SQLAlchemyEventLog:
    """
    Append-only event log; never updates or deletes rows.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def append(self, event: OrderEvent) -> str:
        async with transaction(self._factory) as session:
            session.add(
                OrderEventModel(
                    event_id=event.id,
                    order_id=event.order_id,
                    event_type=event.type.value,
                    correlation_id=event.correlation_id,
                    causation_id=event.causation_id,
                    schema_version=event.schema_version,
                    payload=event.payload,
                    produced_by=event.produced_by.value,
                    created_at=event.created_at,
                    # Position handled by the database - don't set manually
                )
            )
        return event.id

    async def read_events(self, order_id: str) -> list[OrderEvent]:
        stmt = (
            select(OrderEventModel)
            .where(OrderEventModel.order_id == order_id)
            .order_by(OrderEventModel.created_at, OrderEventModel.position)
        )
        async with transaction(self._factory) as session:
            result = await session.execute(stmt)
            models = result.scalars().all()
        return [self._to_event(m) for m in models]

    @staticmethod
    def _to_event(model: OrderEventModel) -> OrderEvent:
        return OrderEvent(
            id=model.event_id,
            order_id=model.order_id,
            type=EventType(model.event_type),
            correlation_id=model.correlation_id,
            causation_id=model.causation_id,
            schema_version=model.schema_version,
            payload=model.payload or {},
            produced_by=Producer(model.produced_by),
            created_at=model.created_at,
            position=model.position,
        )
