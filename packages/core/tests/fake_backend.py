"""In-memory connection provider recording every statement it receives."""

from __future__ import annotations

import contextlib
import re
from collections.abc import AsyncIterator, Sequence
from typing import Any

_FROM = re.compile(r"\bFROM (\w+)")
_AGGREGATES = ("SELECT COUNT", "SELECT SUM", "SELECT AVG", "SELECT MIN", "SELECT MAX")


class RecordingConnection:
    def __init__(self, provider: RecordingProvider) -> None:
        self._provider = provider

    async def fetch(self, sql: str, args: Sequence[Any]) -> list[tuple[Any, ...]]:
        self._provider.statements.append((sql, tuple(args)))
        if self._provider.error is not None:
            raise self._provider.error
        if sql.startswith(_AGGREGATES):
            return [(self._provider.scalar,)]
        match = _FROM.search(sql)
        table = match.group(1) if match else ""
        return list(self._provider.rows.get(table, []))

    async def execute(self, sql: str, args: Sequence[Any]) -> int:
        self._provider.statements.append((sql, tuple(args)))
        if self._provider.error is not None:
            raise self._provider.error
        return 0


class RecordingProvider:
    """
    Returns every configured row of the table named in ``FROM``.

    Filtering is not simulated; the resolver drops children that do not
    belong to any parent, so attachment is still exercised.
    """

    def __init__(
        self,
        rows: dict[str, list[tuple[Any, ...]]] | None = None,
        *,
        scalar: Any = None,
        dialect_name: str = "postgresql",
    ) -> None:
        self.rows = rows or {}
        self.scalar = scalar
        self.dialect_name = dialect_name
        self.statements: list[tuple[str, tuple[Any, ...]]] = []
        self.connections = 0
        self.error: Exception | None = None

    @contextlib.asynccontextmanager
    async def connect(self) -> AsyncIterator[RecordingConnection]:
        self.connections += 1
        yield RecordingConnection(self)

    @property
    def sql(self) -> list[str]:
        return [sql for sql, _ in self.statements]
