"""Engine, session and row conversion helpers for the SQL event store."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .tables import Base

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SQLStorageBase:
    """Owns the async engine and session factory.

    expire_on_commit=False keeps loaded rows usable after the session closes,
    which async sessions need because lazy refresh is not available.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self._database_url = database_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    def _session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._session_factory()

    async def initialize(self) -> None:
        """Create the engine and any missing tables."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(self._database_url, echo=self._echo)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQL event store ready")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @staticmethod
    def _row_to_model(row: Any, model_class: type[ModelT]) -> ModelT:
        data = {column.key: getattr(row, column.key) for column in row.__table__.columns}
        return model_class.model_validate(data)

    @staticmethod
    def _model_to_values(model: BaseModel, fields: Any = None) -> dict[str, Any]:
        data = model.model_dump(mode="python")
        if fields is not None:
            data = {name: data[name] for name in fields}
        return data
