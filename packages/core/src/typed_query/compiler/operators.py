"""Built-in comparison operators and the default registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..operators import ComparisonOperator
from .strategy import SqlOperator, SqlOperatorRegistry

if TYPE_CHECKING:
    from collections.abc import Callable

    from .dialects import SqlDialect


class _BinaryOperator(SqlOperator):
    """``column <symbol> $n``."""

    operator: ComparisonOperator
    symbol: str

    @property
    def name(self) -> ComparisonOperator:
        return self.operator

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return f"{column} {self.symbol} {bind(operands[0])}"


class EqualOperator(_BinaryOperator):
    operator = ComparisonOperator.EQ
    symbol = "="


class NotEqualOperator(_BinaryOperator):
    operator = ComparisonOperator.NE
    symbol = "!="


class GreaterThanOperator(_BinaryOperator):
    operator = ComparisonOperator.GT
    symbol = ">"


class GreaterEqualOperator(_BinaryOperator):
    operator = ComparisonOperator.GE
    symbol = ">="


class LessThanOperator(_BinaryOperator):
    operator = ComparisonOperator.LT
    symbol = "<"


class LessEqualOperator(_BinaryOperator):
    operator = ComparisonOperator.LE
    symbol = "<="


class LikeOperator(SqlOperator):
    """Case-sensitive pattern match; the dialect picks the spelling."""

    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.LIKE

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return dialect.render_like(column, operands[0], bind, negated=False)


class NotLikeOperator(SqlOperator):
    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.NOT_LIKE

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return dialect.render_like(column, operands[0], bind, negated=True)


class ILikeOperator(SqlOperator):
    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.ILIKE

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return dialect.render_ilike(column, bind(operands[0]), negated=False)


class NotILikeOperator(SqlOperator):
    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.NOT_ILIKE

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return dialect.render_ilike(column, bind(operands[0]), negated=True)


class InOperator(SqlOperator):
    """One placeholder per element; an empty list matches nothing."""

    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.IN

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        if not operands:
            return "1 = 0"
        return f"{column} IN ({', '.join(bind(v) for v in operands)})"


class NotInOperator(SqlOperator):
    """One placeholder per element; an empty list matches everything."""

    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.NOT_IN

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        if not operands:
            return "1 = 1"
        return f"{column} NOT IN ({', '.join(bind(v) for v in operands)})"


class IsNullOperator(SqlOperator):
    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.IS_NULL

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return f"{column} IS NULL"


class IsNotNullOperator(SqlOperator):
    @property
    def name(self) -> ComparisonOperator:
        return ComparisonOperator.IS_NOT_NULL

    def render(
        self,
        column: str,
        operands: tuple[Any, ...],
        bind: Callable[[Any], str],
        dialect: SqlDialect,
    ) -> str:
        return f"{column} IS NOT NULL"


def build_default_sql_registry() -> SqlOperatorRegistry:
    """Create a registry with all built-in operators."""
    registry = SqlOperatorRegistry()
    registry.register_all(
        # Standard comparison
        EqualOperator(),
        NotEqualOperator(),
        GreaterThanOperator(),
        GreaterEqualOperator(),
        LessThanOperator(),
        LessEqualOperator(),
        # Set membership
        InOperator(),
        NotInOperator(),
        # String matching
        LikeOperator(),
        NotLikeOperator(),
        ILikeOperator(),
        NotILikeOperator(),
        # Null checks
        IsNullOperator(),
        IsNotNullOperator(),
    )
    return registry


DEFAULT_SQL_REGISTRY = build_default_sql_registry()
