"""Connection provider backed by a SQLAlchemy ``AsyncEngine``."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from .connection import SQLAlchemyConnection
from .exceptions import TransactionError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine


class SQLAlchemyConnectionProvider:
    """
    Hands out one transactional connection per dispatcher call.

    Each ``connect()`` runs inside ``engine.begin()``: the block commits when
    it completes and rolls back when it raises::

        provider = SQLAlchemyConnectionProvider.from_url(
            "postgresql+asyncpg://localhost/app", pool_timeout=5
        )
        dispatcher = QueryDispatcher(provider)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> SQLAlchemyConnectionProvider:
        """Create the engine too; *engine_kwargs* go to ``create_async_engine``."""
        return cls(create_async_engine(url, **engine_kwargs))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextlib.asynccontextmanager
    async def connect(self) -> AsyncIterator[SQLAlchemyConnection]:
        try:
            async with self.engine.begin() as connection:
                yield SQLAlchemyConnection(connection)
        except SQLAlchemyError as e:
            raise TransactionError(f"Connection failed: {e}", original=e) from e

    async def dispose(self) -> None:
        await self.engine.dispose()

    def __repr__(self) -> str:
        url = self.engine.url.render_as_string(hide_password=True)
        return f"SQLAlchemyConnectionProvider({url})"
