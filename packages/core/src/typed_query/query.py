"""
Chainable, lazily evaluated query builder.

Subclass :class:`Query` for an entity to get one attribute per column and a
family of methods per association::

    class UserQuery(Query[User]):
        def adults(self):
            return self.age.gte(18)

    UserQuery(dispatcher).name("Sally")                 # equality shortcut
    UserQuery(dispatcher).age.gte(21).name.asc_order()
    UserQuery(dispatcher).name.not_().in_(["Bill"])
    UserQuery(dispatcher).tasks(lambda t: t.title.ilike("%report%"))
    UserQuery(dispatcher).preload_tasks(TaskQuery().title.asc_order())

    UserQuery.age                                       # the ColumnRef itself

Every mutator returns a new query of the same class (so named scopes such as
``adults()`` compose) wrapping a new :class:`QueryPlan`.  Nothing touches
the backend until one of the async execution methods runs.
"""

from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Generic,
    TypeVar,
    get_args,
    get_origin,
)

from pydantic import ValidationError as PydanticValidationError

from .compiler import compile_plan
from .dispatcher import get_default_dispatcher, resolve_dispatcher
from .entity import Entity
from .exceptions import (
    ExecutionError,
    InvalidPredicateCompositionError,
    RecordNotFoundError,
    RegistryError,
    TypeMismatchError,
)
from .operators import AggregateFunction, JoinKind, SortDirection
from .plan import JoinSpec, PreloadSpec, QueryPlan
from .predicates import ColumnRef, DanglingNegationError, NegationPending, Predicate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    from .compiler import CompiledStatement
    from .dispatcher import QueryDispatcher
    from .registry import EntityDescriptor, ResolvedAssociation

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)
Q = TypeVar("Q", bound="Query[Any]")


# ---------------------------------------------------------------------------
# Column access
# ---------------------------------------------------------------------------


class ColumnAttribute:
    """Column attribute installed on query classes.

    Class access returns the :class:`ColumnRef`; instance access returns a
    :class:`ColumnQuery` bound to that query.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __get__(self, instance: Query[Any] | None, owner: type[Query[Any]]) -> Any:
        ref = owner._entity_descriptor().ref(self.name)
        if instance is None:
            return ref
        return ColumnQuery(instance, ref)


class ColumnQuery(Generic[Q]):
    """Per-column sub-builder; every comparison returns the narrowed query."""

    __slots__ = ("_query", "column")

    def __init__(self, query: Q, column: ColumnRef) -> None:
        self._query = query
        self.column = column

    def __call__(self, value: Any) -> Q:
        return self.eq(value)

    def eq(self, value: Any) -> Q:
        return self._query.where(self.column.eq(value))

    def neq(self, value: Any) -> Q:
        return self._query.where(self.column.neq(value))

    def gt(self, value: Any) -> Q:
        return self._query.where(self.column.gt(value))

    def gte(self, value: Any) -> Q:
        return self._query.where(self.column.gte(value))

    def lt(self, value: Any) -> Q:
        return self._query.where(self.column.lt(value))

    def lte(self, value: Any) -> Q:
        return self._query.where(self.column.lte(value))

    def like(self, pattern: str) -> Q:
        return self._query.where(self.column.like(pattern))

    def ilike(self, pattern: str) -> Q:
        return self._query.where(self.column.ilike(pattern))

    def in_(self, values: Iterable[Any]) -> Q:
        return self._query.where(self.column.in_(values))

    def not_(self) -> NegatedColumnQuery[Q]:
        return NegatedColumnQuery(self._query, self.column.not_())

    # -- ordering -----------------------------------------------------------

    def asc_order(self) -> Q:
        return self._query._with_plan(
            self._query.plan.with_order(self.column, SortDirection.ASC)
        )

    def desc_order(self) -> Q:
        return self._query._with_plan(
            self._query.plan.with_order(self.column, SortDirection.DESC)
        )

    # -- aggregates ---------------------------------------------------------

    async def select_sum(self) -> Any:
        """``SUM`` of the column over matching rows; ``None`` when none match."""
        self._require_numeric("select_sum")
        return await self._query._aggregate(AggregateFunction.SUM, self.column)

    async def select_average(self) -> Any:
        """``AVG`` of the column over matching rows; ``None`` when none match."""
        self._require_numeric("select_average")
        return await self._query._aggregate(AggregateFunction.AVG, self.column)

    async def select_min(self) -> Any:
        value = await self._query._aggregate(AggregateFunction.MIN, self.column)
        return self._coerce(value)

    async def select_max(self) -> Any:
        value = await self._query._aggregate(AggregateFunction.MAX, self.column)
        return self._coerce(value)

    def _require_numeric(self, operation: str) -> None:
        if not self.column.column.is_numeric:
            raise TypeMismatchError(
                self.column.qualified,
                "a numeric column",
                self.column.column.python_type,
                f"{operation}() needs int, float or Decimal",
            )

    def _coerce(self, value: Any) -> Any:
        try:
            return self.column.column.coerce(value)
        except PydanticValidationError as exc:
            raise ExecutionError(
                f"Backend returned {value!r} for {self.column.qualified}",
                original=exc,
            ) from exc

    def __repr__(self) -> str:
        return f"ColumnQuery({self.column.qualified})"


class NegatedColumnQuery(Generic[Q]):
    """``q.<column>.not_()``: exactly one comparison must follow."""

    __slots__ = ("_pending", "_query")

    def __init__(self, query: Q, pending: NegationPending) -> None:
        self._query = query
        self._pending = pending

    def eq(self, value: Any) -> Q:
        return self._query.where(self._pending.eq(value))

    def neq(self, value: Any) -> Q:
        return self._query.where(self._pending.neq(value))

    def gt(self, value: Any) -> Q:
        return self._query.where(self._pending.gt(value))

    def gte(self, value: Any) -> Q:
        return self._query.where(self._pending.gte(value))

    def lt(self, value: Any) -> Q:
        return self._query.where(self._pending.lt(value))

    def lte(self, value: Any) -> Q:
        return self._query.where(self._pending.lte(value))

    def like(self, pattern: str) -> Q:
        return self._query.where(self._pending.like(pattern))

    def ilike(self, pattern: str) -> Q:
        return self._query.where(self._pending.ilike(pattern))

    def in_(self, values: Iterable[Any]) -> Q:
        return self._query.where(self._pending.in_(values))

    def not_(self) -> NegationPending:
        return self._pending.not_()

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        raise DanglingNegationError(
            f"{self._pending!r} must be followed by a comparison, "
            f"not the equality shortcut"
        )

    def __getattr__(self, name: str) -> Any:
        return getattr(self._pending, name)

    def __repr__(self) -> str:
        return f"NegatedColumnQuery({self._pending!r})"


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class Query(Generic[E]):
    """
    Base class for entity query objects.

    The entity is taken from the generic parameter (``Query[User]``) or an
    explicit ``entity = User`` class attribute.  The first query class
    declared for an entity becomes its default, used for association blocks
    and preloads, so its named scopes are available there too.
    """

    entity: ClassVar[type[Any] | None] = None

    def __init__(
        self,
        dispatcher: QueryDispatcher | None = None,
        *,
        plan: QueryPlan | None = None,
    ) -> None:
        descriptor = type(self)._entity_descriptor()
        if plan is not None and plan.entity.entity_cls is not descriptor.entity_cls:
            raise TypeMismatchError(
                type(self).__name__,
                f"a plan over {descriptor.name}",
                plan,
                f"plan targets {plan.entity.name}",
            )
        self._dispatcher = dispatcher
        self._plan = plan if plan is not None else QueryPlan(descriptor)

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        entity_cls = cls.__dict__.get("entity") or _entity_from_bases(cls)
        if entity_cls is None:
            return
        cls.entity = entity_cls
        descriptor = entity_cls.descriptor()

        for column in descriptor.columns:
            _install(cls, column.name, ColumnAttribute(column.name))
        for association in descriptor.associations:
            name = association.name
            _install(cls, f"join_{name}", _join_method(name, JoinKind.INNER, "join"))
            _install(
                cls, f"inner_join_{name}", _join_method(name, JoinKind.INNER, "inner_join")
            )
            _install(cls, f"left_join_{name}", _join_method(name, JoinKind.LEFT, "left_join"))
            _install(cls, f"preload_{name}", _preload_method(name))
            _install(cls, name, _scope_method(name))

        entity_cls.__registry__.set_query_class(entity_cls, cls)

    @classmethod
    def _entity_descriptor(cls) -> EntityDescriptor:
        if cls.entity is None:
            raise RegistryError(
                f"{cls.__name__} is not bound to an entity; "
                f"subclass Query[YourEntity] instead"
            )
        return cls.entity.descriptor()

    @classmethod
    def for_entity(cls, entity_cls: type[Any]) -> type[Query[Any]]:
        """The default query class for *entity_cls*, generated if none was declared."""
        existing = entity_cls.__registry__.query_class(entity_cls)
        if existing is not None:
            return existing
        return type(
            f"{entity_cls.__name__}Query",
            (Query,),
            {
                "entity": entity_cls,
                "__generated__": True,
                "__module__": entity_cls.__module__,
            },
        )

    # ------------------------------------------------------------------ #
    # Plan access                                                         #
    # ------------------------------------------------------------------ #

    @property
    def plan(self) -> QueryPlan:
        return self._plan

    @property
    def dispatcher(self) -> QueryDispatcher | None:
        return self._dispatcher

    def _with_plan(self: Q, plan: QueryPlan) -> Q:
        return type(self)(self._dispatcher, plan=plan)

    def using(self: Q, dispatcher: QueryDispatcher) -> Q:
        """The same query, executed through *dispatcher*."""
        return type(self)(dispatcher, plan=self._plan)

    def to_sql(self) -> CompiledStatement:
        """Compile without executing (the dispatcher's dialect, else PostgreSQL)."""
        dispatcher = self._dispatcher or get_default_dispatcher()
        compiler = dispatcher.compiler if dispatcher is not None else None
        return compile_plan(self._plan, compiler=compiler)

    # ------------------------------------------------------------------ #
    # Mutators                                                            #
    # ------------------------------------------------------------------ #

    def where(self: Q, predicate: Predicate) -> Q:
        """AND a predicate built from this entity's columns."""
        _reject_dangling(predicate, "where()")
        if not isinstance(predicate, Predicate):
            raise InvalidPredicateCompositionError(
                f"where() takes a predicate, got {type(predicate).__name__}"
            )
        return self._with_plan(self._plan.with_predicate(predicate))

    def distinct(self: Q) -> Q:
        return self._with_plan(self._plan.with_distinct())

    def distinct_on(self: Q, column: ColumnRef | str) -> Q:
        return self._with_plan(self._plan.with_distinct_on(self._column_ref(column)))

    def limit(self: Q, count: int) -> Q:
        return self._with_plan(self._plan.with_limit(count))

    def offset(self: Q, count: int) -> Q:
        return self._with_plan(self._plan.with_offset(count))

    def none(self: Q) -> Q:
        """Match nothing, whatever else is chained before or after."""
        return self._with_plan(self._plan.as_none())

    def reset_order(self: Q) -> Q:
        return self._with_plan(self._plan.without_order())

    def join(self: Q, association: str, kind: JoinKind | str = JoinKind.INNER) -> Q:
        resolved = self._association(association)
        join_kind = kind if isinstance(kind, JoinKind) else JoinKind(kind.upper())
        return self._with_plan(self._plan.with_join(JoinSpec(resolved.name, join_kind)))

    def scope(self: Q, association: str, block: Any) -> Q:
        """
        Restrict rows through an association's columns.

        *block* is a query over the target entity, or a callable receiving
        one and returning it narrowed.  Joins the association (INNER) unless
        it is already joined.  Only the block's predicates and joins apply.
        """
        resolved = self._association(association)
        nested = self._nested_plan(resolved, block, "association block")
        existing = self._plan.join_for(resolved.name)
        kind = existing.kind if existing is not None else JoinKind.INNER
        return self._with_plan(self._plan.with_join(JoinSpec(resolved.name, kind, nested)))

    def preload(self: Q, association: str, query: Any = None) -> Q:
        """
        Fetch *association* for every result row in one extra query.

        *query* (or a callable building it) filters and orders the children;
        its own preloads become nested preloads.
        """
        resolved = self._association(association)
        nested = None
        if query is not None:
            nested = self._nested_plan(resolved, query, "preload query")
        return self._with_plan(self._plan.with_preload(PreloadSpec(resolved.name, nested)))

    # ------------------------------------------------------------------ #
    # Execution                                                           #
    # ------------------------------------------------------------------ #

    async def all(self) -> list[E]:
        return await self._executor().fetch_all(self._plan)

    def __aiter__(self) -> AsyncIterator[E]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[E]:
        for record in await self.all():
            yield record

    async def first_or_none(self) -> E | None:
        rows = await self._executor().fetch_all(self._plan.with_limit(1))
        return rows[0] if rows else None

    async def first(self) -> E:
        record = await self.first_or_none()
        if record is None:
            raise RecordNotFoundError(self._plan.entity.name, "first()")
        return record

    async def last_or_none(self) -> E | None:
        plan = self._plan.with_reversed_order().with_limit(1)
        rows = await self._executor().fetch_all(plan)
        return rows[0] if rows else None

    async def last(self) -> E:
        record = await self.last_or_none()
        if record is None:
            raise RecordNotFoundError(self._plan.entity.name, "last()")
        return record

    async def find(self, key: Any) -> E:
        """The row whose primary key equals *key*; ``RecordNotFoundError`` if none."""
        pk = self._plan.entity.pk
        plan = self._plan.with_predicate(pk.eq(key)).with_limit(1)
        rows = await self._executor().fetch_all(plan)
        if not rows:
            raise RecordNotFoundError(self._plan.entity.name, f"{pk.name}={key!r}")
        return rows[0]

    async def select_count(self) -> int:
        value = await self._aggregate(AggregateFunction.COUNT, None)
        return int(value or 0)

    async def destroy_all(self) -> None:
        """
        Remove every row of the table.

        Chained filters and ``none()`` are ignored: this always truncates.
        """
        await self._executor().destroy_all(self._plan.entity)

    # ------------------------------------------------------------------ #
    # Internal                                                            #
    # ------------------------------------------------------------------ #

    def _executor(self) -> QueryDispatcher:
        return resolve_dispatcher(self._dispatcher)

    async def _aggregate(
        self, function: AggregateFunction, column: ColumnRef | None
    ) -> Any:
        return await self._executor().fetch_scalar(
            self._plan.with_aggregate(function, column)
        )

    def _column_ref(self, column: ColumnRef | str) -> ColumnRef:
        if isinstance(column, str):
            return self._plan.entity.ref(column)
        if column.table != self._plan.entity.table:
            raise InvalidPredicateCompositionError(
                f"{column.qualified} is not a column of '{self._plan.entity.table}'"
            )
        return column

    def _association(self, name: str) -> ResolvedAssociation:
        return self._plan.entity.resolve_association(name)

    def _target_query(self, association: ResolvedAssociation) -> Query[Any]:
        return Query.for_entity(association.target.entity_cls)(self._dispatcher)

    def _nested_plan(
        self, association: ResolvedAssociation, query: Any, what: str
    ) -> QueryPlan:
        if callable(query) and not isinstance(query, (Query, NegatedColumnQuery)):
            query = query(self._target_query(association))
        _reject_dangling(query, what)
        if not isinstance(query, Query):
            raise InvalidPredicateCompositionError(
                f"{what} for '{association.owner.name}.{association.name}' must "
                f"produce a query over {association.target.name}, "
                f"got {type(query).__name__}"
            )
        if query.plan.entity.entity_cls is not association.target.entity_cls:
            raise TypeMismatchError(
                f"{association.owner.name}.{association.name}",
                association.target.name,
                query,
                f"{what} is over {query.plan.entity.name}",
            )
        return query.plan

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._plan.to_dict()}>"


_RESERVED_NAMES = frozenset(name for name in vars(Query) if not name.startswith("_"))


def _entity_from_bases(cls: type[Any]) -> type[Any] | None:
    for base in cls.__dict__.get("__orig_bases__", ()):
        origin = get_origin(base)
        if not (isinstance(origin, type) and issubclass(origin, Query)):
            continue
        for arg in get_args(base):
            if isinstance(arg, type) and issubclass(arg, Entity):
                return arg
    return None


def _install(cls: type[Any], name: str, value: Any) -> None:
    if name in _RESERVED_NAMES:
        raise RegistryError(
            f"'{name}' on {cls.__name__} clashes with a Query method; "
            f"rename the column or association"
        )
    if name in cls.__dict__:
        raise RegistryError(
            f"'{name}' on {cls.__name__} is already defined; a column or "
            f"association of that name is generated automatically"
        )
    setattr(cls, name, value)


def _reject_dangling(value: Any, what: str) -> None:
    if isinstance(value, (NegationPending, NegatedColumnQuery)):
        raise DanglingNegationError(
            f"{what} received {value!r}; not_() must be followed by a comparison"
        )


def _join_method(association: str, kind: JoinKind, prefix: str) -> Callable[..., Any]:
    def method(self: Query[Any]) -> Query[Any]:
        return self.join(association, kind)

    method.__name__ = f"{prefix}_{association}"
    method.__doc__ = f"{kind.value} JOIN the '{association}' association."
    return method


def _preload_method(association: str) -> Callable[..., Any]:
    def method(self: Query[Any], query: Any = None) -> Query[Any]:
        return self.preload(association, query)

    method.__name__ = f"preload_{association}"
    method.__doc__ = f"Preload '{association}' for every result row."
    return method


def _scope_method(association: str) -> Callable[..., Any]:
    def method(self: Query[Any], block: Any) -> Query[Any]:
        return self.scope(association, block)

    method.__name__ = association
    method.__doc__ = f"Restrict rows through the '{association}' association."
    return method
