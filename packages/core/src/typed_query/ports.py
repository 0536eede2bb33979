"""Connection ports the dispatcher executes against."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractAsyncContextManager


@runtime_checkable
class IConnection(Protocol):
    """
    A checked-out backend connection.

    ``sql`` uses ``$1..$n`` placeholders; ``args`` are positional.
    Implementations translate both into whatever their driver expects and
    wrap driver failures in :class:`~typed_query.exceptions.ExecutionError`.
    """

    async def fetch(self, sql: str, args: Sequence[Any]) -> list[tuple[Any, ...]]:
        """Run a row-returning statement; rows are positional tuples."""
        ...

    async def execute(self, sql: str, args: Sequence[Any]) -> int:
        """Run a statement without a result set; return the affected row count."""
        ...


@runtime_checkable
class IConnectionProvider(Protocol):
    """
    Hands out connections, one per dispatcher call.

    Providers may also expose a ``dialect_name`` attribute (``"postgresql"``,
    ``"sqlite"``) so the dispatcher can pick the matching SQL dialect.
    """

    def connect(self) -> AbstractAsyncContextManager[IConnection]:
        """Async context manager yielding a connection."""
        ...
