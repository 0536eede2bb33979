"""
SQL operator compilation strategy.

Provides the ``SqlOperator`` interface and a registry keyed by
:class:`ComparisonOperator`, so dialect-independent rendering of each
comparison lives in one isolated class.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..operators import ComparisonOperator
    from .dialects import SqlDialect


class SqlOperator(ABC):
    """
    Strategy interface for rendering a comparison into a SQL fragment.
    """

    @property
    @abstractmethod
    def name(self) -> ComparisonOperator:
        """The operator this strategy handles."""
        ...

    @abstractmethod
    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        """
        Build the SQL fragment.

        Args:
            column: Table-qualified column expression.
            operands: Already type-checked operand values.
            bind: Registers a value as the next argument and returns its
                placeholder (``$n``).
            dialect: Target dialect, for operators that vary per backend.
        """
        ...


class SqlOperatorRegistry:
    """Registry of ``SqlOperator`` instances keyed by :class:`ComparisonOperator`."""

    def __init__(self) -> None:
        self._operators: dict[ComparisonOperator, SqlOperator] = {}

    def register(self, operator: SqlOperator) -> None:
        self._operators[operator.name] = operator

    def register_all(self, *operators: SqlOperator) -> None:
        for op in operators:
            self.register(op)

    def unregister(self, name: ComparisonOperator) -> None:
        self._operators.pop(name, None)

    def get(self, name: ComparisonOperator) -> SqlOperator | None:
        return self._operators.get(name)

    def has(self, name: ComparisonOperator) -> bool:
        return name in self._operators

    @property
    def supported_operators(self) -> set[ComparisonOperator]:
        return set(self._operators.keys())

    def render(
        self,
        name: ComparisonOperator,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        """
        Look up the operator and render it.

        Raises:
            ValueError: If the operator is not registered.
        """
        op = self.get(name)
        if op is None:
            raise ValueError(f"Unsupported operator for SQL compilation: {name}")
        return op.render(column, operands, bind, dialect)
