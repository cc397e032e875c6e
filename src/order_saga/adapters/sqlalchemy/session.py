"""Session helpers shared by the SQLAlchemy adapters."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ...exceptions import StorageError
from .models import Base

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger("order_saga.persistence")

SessionFactory = async_sessionmaker[AsyncSession]


def create_engine(database_url: str, **kwargs: object) -> AsyncEngine:
    return create_async_engine(database_url, **kwargs)  # type: ignore[arg-type]


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the saga tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@contextlib.asynccontextmanager
async def transaction(factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """One committed transaction; driver errors surface as ``StorageError``."""
    try:
        async with factory() as session, session.begin():
            yield session
    except SQLAlchemyError as exc:
        logger.error("Storage operation failed: %s", exc)
        raise StorageError(str(exc)) from exc
