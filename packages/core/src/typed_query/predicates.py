"""
Predicate algebra: typed column references and boolean predicate nodes.

Every comparison constructor validates its operands against the declared
column type *when the predicate is built*, so a mismatch never reaches the
backend::

    users = registry.describe(User)
    users.ref("age").gte(21)                 # users.age >= $1
    users.ref("name").not_().in_(["Bill"])   # users.name NOT IN ($1)
    users.ref("age").eq("old")               # TypeMismatchError

Negation is a two-state machine.  ``not_()`` returns a
:class:`NegationPending` that only offers comparison constructors; using it
for anything else raises :class:`DanglingNegationError` on the spot.

Only conjunction is exposed (``&`` or chained query calls); there is no
``OR`` composition.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidPredicateCompositionError, TypeMismatchError
from .operators import ComparisonOperator

if TYPE_CHECKING:
    from .registry import ColumnDescriptor


class DanglingNegationError(InvalidPredicateCompositionError, AttributeError):
    """``not_()`` was not followed by exactly one comparison."""


class Predicate:
    """Base class for predicate tree nodes."""

    def __and__(self, other: Predicate) -> Conjunction:
        if not isinstance(other, Predicate):
            raise InvalidPredicateCompositionError(
                f"Cannot combine a predicate with {type(other).__name__}"
            )
        return Conjunction((self, other))

    def __invert__(self) -> Negation:
        return Negation(self)

    def __or__(self, other: Any) -> Predicate:
        raise InvalidPredicateCompositionError(
            "OR composition is not supported; chain conditions to AND them"
        )

    def column_refs(self) -> Iterable[ColumnRef]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Comparison(Predicate):
    """Leaf node: ``column <operator> operands``."""

    column: ColumnRef
    operator: ComparisonOperator
    operands: tuple[Any, ...] = ()

    def column_refs(self) -> Iterable[ColumnRef]:
        yield self.column

    def to_dict(self) -> dict[str, Any]:
        val: Any
        if self.operator.takes_sequence:
            val = list(self.operands)
        else:
            val = self.operands[0] if self.operands else None
        return {"op": self.operator.value, "attr": self.column.qualified, "val": val}


@dataclass(frozen=True)
class Negation(Predicate):
    """Logical NOT of a single predicate."""

    predicate: Predicate

    def column_refs(self) -> Iterable[ColumnRef]:
        return self.predicate.column_refs()

    def to_dict(self) -> dict[str, Any]:
        return {"op": "not", "conditions": [self.predicate.to_dict()]}


@dataclass(frozen=True)
class Conjunction(Predicate):
    """Logical AND of two or more predicates."""

    predicates: tuple[Predicate, ...]

    def __and__(self, other: Predicate) -> Conjunction:
        if not isinstance(other, Predicate):
            raise InvalidPredicateCompositionError(
                f"Cannot combine a predicate with {type(other).__name__}"
            )
        return Conjunction((*self.predicates, other))

    def column_refs(self) -> Iterable[ColumnRef]:
        for predicate in self.predicates:
            yield from predicate.column_refs()

    def to_dict(self) -> dict[str, Any]:
        return {"op": "and", "conditions": [p.to_dict() for p in self.predicates]}


@dataclass(frozen=True)
class ColumnRef:
    """A table-qualified column with its declared type."""

    table: str
    column: ColumnDescriptor

    @property
    def name(self) -> str:
        return self.column.name

    @property
    def qualified(self) -> str:
        return f"{self.table}.{self.column.name}"

    # -- comparison constructors --------------------------------------------

    def eq(self, value: Any) -> Comparison:
        if value is None:
            self._require_nullable(value)
            return Comparison(self, ComparisonOperator.IS_NULL)
        return self._compare(ComparisonOperator.EQ, value)

    def neq(self, value: Any) -> Comparison:
        if value is None:
            self._require_nullable(value)
            return Comparison(self, ComparisonOperator.IS_NOT_NULL)
        return self._compare(ComparisonOperator.NE, value)

    def gt(self, value: Any) -> Comparison:
        return self._compare(ComparisonOperator.GT, value)

    def gte(self, value: Any) -> Comparison:
        return self._compare(ComparisonOperator.GE, value)

    def lt(self, value: Any) -> Comparison:
        return self._compare(ComparisonOperator.LT, value)

    def lte(self, value: Any) -> Comparison:
        return self._compare(ComparisonOperator.LE, value)

    def like(self, pattern: str) -> Comparison:
        return self._match(ComparisonOperator.LIKE, pattern)

    def ilike(self, pattern: str) -> Comparison:
        return self._match(ComparisonOperator.ILIKE, pattern)

    def in_(self, values: Iterable[Any]) -> Comparison:
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            raise TypeMismatchError(
                self.qualified,
                f"a collection of {self.column.type_name}",
                values,
                "in_() takes a list, tuple or set",
            )
        operands = tuple(self._operand(v) for v in values)
        return Comparison(self, ComparisonOperator.IN, operands)

    def not_(self) -> NegationPending:
        return NegationPending(self)

    # -- internals ----------------------------------------------------------

    def _operand(self, value: Any) -> Any:
        if value is None:
            raise TypeMismatchError(
                self.qualified,
                self.column.python_type.__name__,
                value,
                "use eq(None) / neq(None) for NULL checks",
            )
        return self.column.validate(value, label=self.qualified)

    def _compare(self, operator: ComparisonOperator, value: Any) -> Comparison:
        return Comparison(self, operator, (self._operand(value),))

    def _match(self, operator: ComparisonOperator, pattern: Any) -> Comparison:
        if not self.column.is_text:
            raise TypeMismatchError(
                self.qualified,
                self.column.type_name,
                pattern,
                f"{operator.value} needs a text column",
            )
        return self._compare(operator, pattern)

    def _require_nullable(self, value: Any) -> None:
        if not self.column.nullable:
            raise TypeMismatchError(
                self.qualified, self.column.type_name, value, "column is not nullable"
            )


class NegationPending:
    """
    ``not_()`` state: the next comparison is negated.

    Anything other than a single comparison call is a usage error.
    """

    __slots__ = ("_column",)

    def __init__(self, column: ColumnRef) -> None:
        self._column = column

    def eq(self, value: Any) -> Negation:
        return Negation(self._column.eq(value))

    def neq(self, value: Any) -> Negation:
        return Negation(self._column.neq(value))

    def gt(self, value: Any) -> Negation:
        return Negation(self._column.gt(value))

    def gte(self, value: Any) -> Negation:
        return Negation(self._column.gte(value))

    def lt(self, value: Any) -> Negation:
        return Negation(self._column.lt(value))

    def lte(self, value: Any) -> Negation:
        return Negation(self._column.lte(value))

    def like(self, pattern: str) -> Negation:
        return Negation(self._column.like(pattern))

    def ilike(self, pattern: str) -> Negation:
        return Negation(self._column.ilike(pattern))

    def in_(self, values: Iterable[Any]) -> Negation:
        return Negation(self._column.in_(values))

    def not_(self) -> NegationPending:
        raise DanglingNegationError(
            f"not_() called twice on {self._column.qualified}"
        )

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        raise DanglingNegationError(
            f"not_() on {self._column.qualified} must be followed by a "
            f"comparison (eq, gt, in_, like, ...), not '{name}'"
        )

    def __repr__(self) -> str:
        return f"NegationPending({self._column.qualified})"
