"""
:class:`IConnection` over a SQLAlchemy ``AsyncConnection``.

Compiled statements use ``$n`` placeholders; SQLAlchemy's ``text()``
construct binds by name, so ``$3`` becomes ``:p3`` bound to ``args[2]``.
Each bind gets the SQLAlchemy type inferred from its value, so driver
conversions (``Decimal``, ``UUID``, ``datetime`` on SQLite) still apply.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import SQLAlchemyExecutionError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncConnection
    from sqlalchemy.sql.elements import TextClause

_PLACEHOLDER = re.compile(r"\$(\d+)")


def to_text_clause(sql: str, args: Sequence[Any]) -> TextClause:
    """Translate ``$n`` placeholders into typed, named ``text()`` binds."""
    binds = [bindparam(f"p{index}", value) for index, value in enumerate(args, start=1)]
    return text(_PLACEHOLDER.sub(r":p\1", sql)).bindparams(*binds)


class SQLAlchemyConnection:
    """Runs compiled statements on one checked-out connection."""

    def __init__(self, connection: AsyncConnection) -> None:
        self._connection = connection

    @property
    def connection(self) -> AsyncConnection:
        return self._connection

    async def fetch(self, sql: str, args: Sequence[Any]) -> list[tuple[Any, ...]]:
        statement = to_text_clause(sql, args)
        try:
            result = await self._connection.execute(statement)
            return [tuple(row) for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise SQLAlchemyExecutionError(
                f"Query failed: {e}", statement=sql, original=e
            ) from e

    async def execute(self, sql: str, args: Sequence[Any]) -> int:
        statement = to_text_clause(sql, args)
        try:
            result = await self._connection.execute(statement)
        except SQLAlchemyError as e:
            raise SQLAlchemyExecutionError(
                f"Statement failed: {e}", statement=sql, original=e
            ) from e
        return max(result.rowcount, 0)
