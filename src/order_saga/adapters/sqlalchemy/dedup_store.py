"""
SQLAlchemy implementation of the dedup store.

Reservation is a plain INSERT against the composite primary key; losing the
race surfaces as ``IntegrityError`` and is reported as ``AlreadyProcessed``.
There is no SELECT-then-INSERT window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ...exceptions import StorageError
from ...ports.dedup_store import (
    AlreadyProcessed,
    DedupKey,
    Reserved,
    ReservationResult,
)
from .models import DedupKeyModel
from .session import SessionFactory, transaction

logger = logging.getLogger("order_saga.persistence")


class SQLAlchemyDedupStore:
    def __init__(
        self,
        session_factory: SessionFactory,
        retention: timedelta = timedelta(hours=24),
    ) -> None:
        self._factory = session_factory
        self._retention = retention

    def _new_row(
        self,
        event_type: str,
        order_id: str,
        correlation_id: str,
        event_id: str | None,
    ) -> DedupKeyModel:
        now = datetime.now(timezone.utc)
        return DedupKeyModel(
            event_type=event_type,
            order_id=order_id,
            correlation_id=correlation_id,
            event_id=event_id,
            created_at=now,
            expires_at=now + self._retention,
        )

    async def check_and_reserve(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> ReservationResult:
        try:
            async with self._factory() as session, session.begin():
                session.add(self._new_row(event_type, order_id, correlation_id, None))
        except IntegrityError:
            existing = await self.lookup(event_type, order_id, correlation_id)
            return AlreadyProcessed(existing.event_id if existing else None)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return Reserved()

    async def confirm(
        self, event_type: str, order_id: str, correlation_id: str, event_id: str
    ) -> None:
        try:
            async with self._factory() as session, session.begin():
                result = await session.execute(
                    update(DedupKeyModel)
                    .where(
                        DedupKeyModel.event_type == event_type,
                        DedupKeyModel.order_id == order_id,
                        DedupKeyModel.correlation_id == correlation_id,
                        DedupKeyModel.event_id.is_(None),
                    )
                    .values(event_id=event_id)
                )
                if result.rowcount:
                    return
                existing = await session.get(
                    DedupKeyModel, (event_type, order_id, correlation_id)
                )
                if existing is None:
                    session.add(
                        self._new_row(event_type, order_id, correlation_id, event_id)
                    )
        except IntegrityError:
            # Inserted concurrently; insert-or-ignore.
            logger.debug(
                "Dedup key %s/%s/%s already confirmed",
                event_type,
                order_id,
                correlation_id,
            )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    async def release(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> bool:
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(DedupKeyModel).where(
                    DedupKeyModel.event_type == event_type,
                    DedupKeyModel.order_id == order_id,
                    DedupKeyModel.correlation_id == correlation_id,
                    DedupKeyModel.event_id.is_(None),
                )
            )
            return bool(result.rowcount)

    async def lookup(
        self, event_type: str, order_id: str, correlation_id: str
    ) -> DedupKey | None:
        async with transaction(self._factory) as session:
            model = await session.get(
                DedupKeyModel, (event_type, order_id, correlation_id)
            )
            if model is None:
                return None
            return DedupKey(
                event_type=model.event_type,
                order_id=model.order_id,
                correlation_id=model.correlation_id,
                event_id=model.event_id,
                created_at=model.created_at,
                expires_at=model.expires_at,
            )

    async def purge_expired(self, now: datetime) -> int:
        async with transaction(self._factory) as session:
            result = await session.execute(
                delete(DedupKeyModel).where(DedupKeyModel.expires_at <= now)
            )
            return int(result.rowcount or 0)
