"""
Query plans: immutable descriptions of a pending database query.

A :class:`QueryPlan` wraps table identity with result-shaping parameters
(predicates, ordering, pagination, distinctness, aggregate projection,
joins and preloads).  Every ``with_*`` method returns a new plan; nothing
here performs I/O.

Once :meth:`QueryPlan.as_none` has been applied no method clears the
``is_none`` flag again, so the plan keeps compiling to an empty result.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidPredicateCompositionError
from .operators import AggregateFunction, JoinKind, SortDirection

if TYPE_CHECKING:
    from .predicates import ColumnRef, Predicate
    from .registry import EntityDescriptor


@dataclass(frozen=True)
class OrderClause:
    column: ColumnRef
    direction: SortDirection = SortDirection.ASC

    def reversed(self) -> OrderClause:
        return OrderClause(self.column, self.direction.reversed)


@dataclass(frozen=True)
class AggregateSelection:
    """Aggregate projection; ``column`` is ``None`` for ``COUNT(*)``."""

    function: AggregateFunction
    column: ColumnRef | None = None


@dataclass(frozen=True)
class JoinSpec:
    """
    Join to an association.

    ``plan`` (a plan over the association's target entity) restricts the
    joined side: its predicates are ANDed into the outer WHERE and its own
    joins are rendered after this one.
    """

    association: str
    kind: JoinKind = JoinKind.INNER
    plan: QueryPlan | None = None


@dataclass(frozen=True)
class PreloadSpec:
    """
    Eager fetch of an association for every parent row.

    ``plan`` filters/orders the children; its own ``preloads`` are the
    nested preload specifications.
    """

    association: str
    plan: QueryPlan | None = None


@dataclass(frozen=True)
class QueryPlan:
    """Immutable aggregate of everything needed to compile a query."""

    entity: EntityDescriptor
    predicates: tuple[Predicate, ...] = ()
    order_by: tuple[OrderClause, ...] = ()
    limit: int | None = None
    offset: int | None = None
    distinct: bool = False
    distinct_on: ColumnRef | None = None
    aggregate: AggregateSelection | None = None
    joins: tuple[JoinSpec, ...] = ()
    preloads: tuple[PreloadSpec, ...] = ()
    is_none: bool = False

    # -- predicates ---------------------------------------------------------

    def with_predicate(self, predicate: Predicate) -> QueryPlan:
        """AND *predicate* into the plan; its columns must belong to this table."""
        for ref in predicate.column_refs():
            if ref.table != self.entity.table:
                raise InvalidPredicateCompositionError(
                    f"Predicate on {ref.qualified} cannot filter "
                    f"'{self.entity.table}' directly; scope it through the "
                    f"association instead"
                )
        return replace(self, predicates=(*self.predicates, predicate))

    def as_none(self) -> QueryPlan:
        return replace(self, is_none=True)

    # -- ordering / pagination ---------------------------------------------

    def with_order(self, column: ColumnRef, direction: SortDirection) -> QueryPlan:
        return replace(self, order_by=(*self.order_by, OrderClause(column, direction)))

    def without_order(self) -> QueryPlan:
        return replace(self, order_by=())

    def with_reversed_order(self) -> QueryPlan:
        """Reverse explicit ordering, or order by primary key descending."""
        if self.order_by:
            return replace(self, order_by=tuple(o.reversed() for o in self.order_by))
        return replace(
            self, order_by=(OrderClause(self.entity.pk, SortDirection.DESC),)
        )

    def with_limit(self, limit: int | None) -> QueryPlan:
        return replace(self, limit=_non_negative("limit", limit))

    def with_offset(self, offset: int | None) -> QueryPlan:
        return replace(self, offset=_non_negative("offset", offset))

    @property
    def is_paginated(self) -> bool:
        return self.limit is not None or self.offset is not None

    # -- projection ---------------------------------------------------------

    def with_distinct(self) -> QueryPlan:
        return replace(self, distinct=True)

    def with_distinct_on(self, column: ColumnRef) -> QueryPlan:
        return replace(self, distinct_on=column)

    def with_aggregate(
        self, function: AggregateFunction, column: ColumnRef | None = None
    ) -> QueryPlan:
        return replace(self, aggregate=AggregateSelection(function, column))

    # -- associations -------------------------------------------------------

    def with_join(self, join: JoinSpec) -> QueryPlan:
        """
        Add a join; joining the same association again updates it in place.

        A repeated join keeps the existing position, takes the new kind,
        and ANDs the restricting plans together.
        """
        joins = list(self.joins)
        for idx, existing in enumerate(joins):
            if existing.association == join.association:
                joins[idx] = JoinSpec(
                    join.association,
                    join.kind,
                    _merge_scopes(existing.plan, join.plan),
                )
                return replace(self, joins=tuple(joins))
        return replace(self, joins=(*self.joins, join))

    def join_for(self, association: str) -> JoinSpec | None:
        for join in self.joins:
            if join.association == association:
                return join
        return None

    def with_preload(self, preload: PreloadSpec) -> QueryPlan:
        """Add a preload; preloading the same association again replaces it."""
        preloads = tuple(p for p in self.preloads if p.association != preload.association)
        return replace(self, preloads=(*preloads, preload))

    # -- execution shapes ---------------------------------------------------

    def for_rows(self) -> QueryPlan:
        """The row-returning form of this plan (no aggregate projection)."""
        if self.aggregate is None:
            return self
        return replace(self, aggregate=None)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dictionary (for logs and debugging)."""
        result: dict[str, Any] = {"table": self.entity.table}
        if self.predicates:
            result["where"] = [p.to_dict() for p in self.predicates]
        if self.order_by:
            result["order_by"] = [
                f"{o.column.qualified} {o.direction.value}" for o in self.order_by
            ]
        if self.limit is not None:
            result["limit"] = self.limit
        if self.offset is not None:
            result["offset"] = self.offset
        if self.distinct:
            result["distinct"] = True
        if self.distinct_on is not None:
            result["distinct_on"] = self.distinct_on.qualified
        if self.aggregate is not None:
            result["aggregate"] = self.aggregate.function.value
        if self.joins:
            result["joins"] = [f"{j.kind.value} {j.association}" for j in self.joins]
        if self.preloads:
            result["preloads"] = [p.association for p in self.preloads]
        if self.is_none:
            result["none"] = True
        return result


def _non_negative(name: str, value: int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def _merge_scopes(left: QueryPlan | None, right: QueryPlan | None) -> QueryPlan | None:
    if left is None:
        return right
    if right is None:
        return left
    merged = left
    for predicate in right.predicates:
        merged = merged.with_predicate(predicate)
    for join in right.joins:
        merged = merged.with_join(join)
    if right.is_none:
        merged = merged.as_none()
    return merged
