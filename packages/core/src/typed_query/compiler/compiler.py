"""
Compile a :class:`QueryPlan` into a parameterized SQL statement.

Compilation is a pure function of the plan: it never executes anything and
the same plan always yields the same ``(sql, args)`` pair.  Placeholders are
numbered ``$1..$n`` in the order they appear in the text, which is also the
order of the argument tuple.

Clause order is fixed::

    SELECT [DISTINCT | DISTINCT ON (col)] <columns>
    FROM <table> [<KIND> JOIN <child> ON <parent.key> = <child.key> ...]
    [WHERE <a> AND <b> ...] [ORDER BY ...] [LIMIT $n] [OFFSET $m]

Leaf comparisons are rendered through a :class:`SqlOperatorRegistry`
(strategy pattern); backend differences go through a :class:`SqlDialect`.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, NamedTuple

from ..exceptions import CompilationError
from ..operators import AggregateFunction
from ..predicates import Comparison, Conjunction, Negation
from .dialects import PostgresDialect
from .operators import DEFAULT_SQL_REGISTRY

if TYPE_CHECKING:
    from ..plan import JoinSpec, QueryPlan
    from ..predicates import Predicate
    from ..registry import EntityDescriptor
    from .dialects import SqlDialect
    from .strategy import SqlOperatorRegistry

_CONTRADICTION = "1 = 0"
_PLACEHOLDER = re.compile(r"\$(\d+)")


class CompiledStatement(NamedTuple):
    """Statement text with ``$n`` placeholders plus its ordered arguments."""

    sql: str
    args: tuple[Any, ...]

    @property
    def placeholder_count(self) -> int:
        """Distinct ``$n`` placeholders referenced by the text."""
        return len(set(_PLACEHOLDER.findall(self.sql)))


class _Arguments:
    """Collects argument values and hands out matching placeholders."""

    def __init__(self, dialect: SqlDialect) -> None:
        self._dialect = dialect
        self.values: list[Any] = []

    def bind(self, value: Any) -> str:
        self.values.append(value)
        return self._dialect.placeholder(len(self.values))


class SqlCompiler:
    """Lowers query plans to SQL for one dialect."""

    def __init__(
        self,
        dialect: SqlDialect | None = None,
        operators: SqlOperatorRegistry | None = None,
    ) -> None:
        self.dialect = dialect or PostgresDialect()
        self._operators = operators if operators is not None else DEFAULT_SQL_REGISTRY

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #

    def compile(self, plan: QueryPlan) -> CompiledStatement:
        args = _Arguments(self.dialect)
        if plan.aggregate is not None:
            sql = self._aggregate(plan, args)
        else:
            sql = self._select(plan, args)
        return CompiledStatement(sql, tuple(args.values))

    def compile_destroy_all(self, entity: EntityDescriptor) -> CompiledStatement:
        """Unconditional truncation of the entity's table."""
        return CompiledStatement(self.dialect.render_truncate(entity.table), ())

    def compile_delete(self, entity: EntityDescriptor, key: Any) -> CompiledStatement:
        """``DELETE`` of a single row by primary key."""
        args = _Arguments(self.dialect)
        pk = entity.pk
        sql = f"DELETE FROM {entity.table} WHERE {pk.qualified} = {args.bind(key)}"
        return CompiledStatement(sql, tuple(args.values))

    # ------------------------------------------------------------------ #
    # Internal: statements                                                #
    # ------------------------------------------------------------------ #

    def _select(self, plan: QueryPlan, args: _Arguments) -> str:
        entity = plan.entity
        head = ["SELECT"]
        if plan.distinct_on is not None:
            head.append(self.dialect.render_distinct_on(plan.distinct_on.qualified))
        elif plan.distinct:
            head.append("DISTINCT")
        head.append(", ".join(f"{entity.table}.{name}" for name in entity.column_names))

        parts = [" ".join(head)]
        parts.extend(self._from_and_where(plan, args))

        if plan.order_by:
            parts.append(
                "ORDER BY "
                + ", ".join(
                    f"{o.column.qualified} {o.direction.value}" for o in plan.order_by
                )
            )

        limit_ph = args.bind(plan.limit) if plan.limit is not None else None
        offset_ph = args.bind(plan.offset) if plan.offset is not None else None
        parts.extend(self.dialect.render_pagination(limit_ph, offset_ph))
        return " ".join(parts)

    def _aggregate(self, plan: QueryPlan, args: _Arguments) -> str:
        aggregate = plan.aggregate
        assert aggregate is not None
        function = aggregate.function.value

        if plan.distinct or plan.distinct_on is not None or plan.is_paginated:
            # Row shaping must happen before aggregation
            inner = self._select(plan.for_rows(), args)
            target = (
                "*"
                if aggregate.function is AggregateFunction.COUNT
                or aggregate.column is None
                else f"subquery.{aggregate.column.name}"
            )
            return f"SELECT {function}({target}) FROM ({inner}) AS subquery"

        target = "*" if aggregate.column is None else aggregate.column.qualified
        parts = [f"SELECT {function}({target})"]
        parts.extend(self._from_and_where(plan, args))
        return " ".join(parts)

    def _from_and_where(self, plan: QueryPlan, args: _Arguments) -> list[str]:
        parts = [f"FROM {plan.entity.table}"]
        scopes: list[QueryPlan] = []
        self._joins(plan.entity, plan.joins, parts, scopes, {plan.entity.table})

        conditions: list[str] = []
        if plan.is_none or any(scope.is_none for scope in scopes):
            conditions.append(_CONTRADICTION)
        for predicate in plan.predicates:
            conditions.extend(self._conditions(predicate, args))
        for scope in scopes:
            for predicate in scope.predicates:
                conditions.extend(self._conditions(predicate, args))

        if conditions:
            parts.append("WHERE " + " AND ".join(conditions))
        return parts

    def _joins(
        self,
        owner: EntityDescriptor,
        joins: tuple[JoinSpec, ...],
        parts: list[str],
        scopes: list[QueryPlan],
        seen_tables: set[str],
    ) -> None:
        for join in joins:
            association = owner.resolve_association(join.association)
            target = association.target
            if target.table in seen_tables:
                raise CompilationError(
                    f"Joining '{owner.name}.{join.association}' would reference "
                    f"table '{target.table}' twice; table aliasing is not supported"
                )
            seen_tables.add(target.table)
            parts.append(
                f"{join.kind.value} JOIN {target.table} ON "
                f"{association.parent_ref.qualified} = "
                f"{association.child_ref.qualified}"
            )
            if join.plan is not None:
                scopes.append(join.plan)
                self._joins(target, join.plan.joins, parts, scopes, seen_tables)

    # ------------------------------------------------------------------ #
    # Internal: predicates                                                #
    # ------------------------------------------------------------------ #

    def _conditions(self, predicate: Predicate, args: _Arguments) -> list[str]:
        """Top-level conjunctions are flattened into separate AND terms."""
        if isinstance(predicate, Conjunction):
            result: list[str] = []
            for child in predicate.predicates:
                result.extend(self._conditions(child, args))
            return result
        return [self._predicate(predicate, args)]

    def _predicate(
        self, predicate: Predicate, args: _Arguments, *, negate: bool = False
    ) -> str:
        if isinstance(predicate, Comparison):
            operator = predicate.operator.negated if negate else predicate.operator
            return self._operators.render(
                operator,
                predicate.column.qualified,
                predicate.operands,
                args.bind,
                self.dialect,
            )
        if isinstance(predicate, Negation):
            return self._predicate(predicate.predicate, args, negate=not negate)
        if isinstance(predicate, Conjunction):
            inner = " AND ".join(self._predicate(p, args) for p in predicate.predicates)
            return f"NOT ({inner})" if negate else f"({inner})"
        raise CompilationError(f"Cannot compile predicate {predicate!r}")


_DEFAULT_COMPILER = SqlCompiler()


def compile_plan(
    plan: QueryPlan, *, compiler: SqlCompiler | None = None
) -> CompiledStatement:
    """Compile *plan* with the given compiler (PostgreSQL by default)."""
    return (compiler or _DEFAULT_COMPILER).compile(plan)
