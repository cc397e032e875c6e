"""
SQLAlchemy implementation of dead-letter persistence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from ...domain.dead_letter import OPEN_STATUSES, DeadLetterEntry
from .models import DeadLetterModel
from .session import SessionFactory, transaction

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from ...domain.dead_letter import DeadLetterStatus


class SQLAlchemyDeadLetterRepository:
    """
    SQLAlchemy-backed persistence for dead-letter entries.
    The sweep query is served by the ``(status, retry_count, last_retry_at)``
    index.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory

    async def add(self, entry: DeadLetterEntry) -> str:
        """Insert or update an entry."""
        async with transaction(self._factory) as session:
            await session.merge(self.to_model(entry))
        return entry.id

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        async with transaction(self._factory) as session:
            model = await session.get(DeadLetterModel, entry_id)
            return self.from_model(model) if model is not None else None

    async def list_eligible(
        self,
        now: datetime,
        cooldown: timedelta,
        limit: int = 10,
        max_retries: int | None = None,
    ) -> list[DeadLetterEntry]:
        threshold = now - cooldown
        stmt = select(DeadLetterModel).where(
            DeadLetterModel.status.in_(list(OPEN_STATUSES)),
            DeadLetterModel.retry_count < DeadLetterModel.max_retries,
            or_(
                DeadLetterModel.last_retry_at.is_(None),
                DeadLetterModel.last_retry_at <= threshold,
            ),
        )
        if max_retries is not None:
            stmt = stmt.where(DeadLetterModel.retry_count < max_retries)
        stmt = stmt.order_by(DeadLetterModel.created_at).limit(limit)
        async with transaction(self._factory) as session:
            result = await session.execute(stmt)
            return [self.from_model(m) for m in result.scalars().all()]

    async def find_open_for_order(self, order_id: str) -> list[DeadLetterEntry]:
        stmt = (
            select(DeadLetterModel)
            .where(
                DeadLetterModel.order_id == order_id,
                DeadLetterModel.status.in_(list(OPEN_STATUSES)),
            )
            .order_by(DeadLetterModel.created_at)
        )
        async with transaction(self._factory) as session:
            result = await session.execute(stmt)
            return [self.from_model(m) for m in result.scalars().all()]

    async def find(
        self,
        statuses: list[DeadLetterStatus] | None = None,
        order_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterEntry]:
        stmt = select(DeadLetterModel)
        if statuses is not None:
            stmt = stmt.where(DeadLetterModel.status.in_(statuses))
        if order_id is not None:
            stmt = stmt.where(DeadLetterModel.order_id == order_id)
        if event_type is not None:
            stmt = stmt.where(DeadLetterModel.event_type == event_type)
        stmt = stmt.order_by(DeadLetterModel.created_at.desc()).limit(limit)
        async with transaction(self._factory) as session:
            result = await session.execute(stmt)
            return [self.from_model(m) for m in result.scalars().all()]

    @staticmethod
    def to_model(entry: DeadLetterEntry) -> DeadLetterModel:
        return DeadLetterModel(
            id=entry.id,
            order_id=entry.order_id,
            event_type=entry.event_type,
            stage=entry.stage,
            correlation_id=entry.correlation_id,
            error_message=entry.error_message,
            retry_count=entry.retry_count,
            max_retries=entry.max_retries,
            status=entry.status,
            last_retry_at=entry.last_retry_at,
            replayed_at=entry.replayed_at,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )

    @staticmethod
    def from_model(model: DeadLetterModel) -> DeadLetterEntry:
        return DeadLetterEntry(
            id=model.id,
            order_id=model.order_id,
            event_type=model.event_type,
            stage=model.stage,
            correlation_id=model.correlation_id,
            error_message=model.error_message or "",
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            status=model.status,
            last_retry_at=model.last_retry_at,
            replayed_at=model.replayed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
