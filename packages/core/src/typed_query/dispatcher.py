"""
Execution dispatcher.

Turns query plans into compiled statements, sends them over one checked-out
connection per call, materializes rows into entities and runs the preload
fan-out.  Every statement passes through the instrumentation hooks and is
logged at DEBUG with its arguments and duration.
"""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from .compiler import SqlCompiler, SqlDialect, dialect_for
from .config import ExecutionMode, QuerySettings
from .exceptions import ConfigurationError, ExecutionError
from .instrumentation import HookRegistry, StatementEvent, get_hook_registry
from .plan import PreloadSpec
from .policies import UnloadedAssociationPolicy, policy_for_mode
from .resolver import AssociationResolver

if TYPE_CHECKING:
    from .compiler import CompiledStatement
    from .entity import Entity
    from .plan import QueryPlan
    from .ports import IConnection, IConnectionProvider
    from .registry import EntityDescriptor

logger = logging.getLogger(__name__)


class QueryDispatcher:
    """
    Executes plans against an :class:`IConnectionProvider`.

    Args:
        provider: Source of connections.
        policy: What ``await entity.<association>`` does when the
            association was not preloaded.  Derived from *mode* if omitted.
        mode: Execution mode; read from the environment if omitted.
        dialect: A :class:`SqlDialect` or backend name.  Defaults to the
            provider's ``dialect_name`` and then to PostgreSQL.
        hooks: Instrumentation hooks; the context registry if omitted.
    """

    def __init__(
        self,
        provider: IConnectionProvider,
        *,
        policy: UnloadedAssociationPolicy | None = None,
        mode: ExecutionMode | None = None,
        dialect: SqlDialect | str | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self.provider = provider
        self.mode = mode if mode is not None else QuerySettings.from_env().mode
        self.policy = policy if policy is not None else policy_for_mode(self.mode)
        if not isinstance(dialect, SqlDialect):
            dialect = dialect_for(dialect or getattr(provider, "dialect_name", None))
        self.compiler = SqlCompiler(dialect)
        self._hooks = hooks
        self._resolver = AssociationResolver(self)

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks if self._hooks is not None else get_hook_registry()

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #

    async def fetch_all(self, plan: QueryPlan) -> list[Any]:
        """Rows of *plan* as entities, with every preload resolved."""
        async with self.provider.connect() as conn:
            return await self.load(plan, conn)

    async def fetch_scalar(self, plan: QueryPlan) -> Any:
        """First column of the first row of an aggregate plan, or ``None``."""
        statement = self.compiler.compile(plan)
        async with self.provider.connect() as conn:
            rows = await self._fetch(conn, statement, "query.aggregate", plan.entity)
        if not rows:
            return None
        return rows[0][0]

    async def execute(
        self, statement: CompiledStatement, entity: EntityDescriptor
    ) -> int:
        """Run a statement without a result set; return the affected row count."""
        async with self.provider.connect() as conn:
            return await self._execute(conn, statement, entity)

    async def destroy_all(self, entity: EntityDescriptor) -> None:
        await self.execute(self.compiler.compile_destroy_all(entity), entity)

    async def delete(self, record: Entity) -> None:
        descriptor = record.descriptor()
        statement = self.compiler.compile_delete(descriptor, record.primary_key_value)
        await self.execute(statement, descriptor)

    async def load_association(self, record: Entity, association: str) -> Any:
        """Fetch one association of one entity and cache it on the entity."""
        descriptor = record.descriptor()
        async with self.provider.connect() as conn:
            await self._resolver.resolve(
                descriptor, [record], PreloadSpec(association), conn
            )
        return record._state.associations[association]

    async def load(
        self,
        plan: QueryPlan,
        conn: IConnection,
        *,
        operation: str = "query.select",
    ) -> list[Any]:
        """Run *plan* on an already checked-out connection, preloads included."""
        statement = self.compiler.compile(plan)
        rows = await self._fetch(conn, statement, operation, plan.entity)
        entities = [self._materialize(plan.entity, row) for row in rows]
        for preload in plan.preloads:
            await self._resolver.resolve(plan.entity, entities, preload, conn)
        return entities

    # ------------------------------------------------------------------ #
    # Internal                                                            #
    # ------------------------------------------------------------------ #

    def _materialize(self, entity: EntityDescriptor, row: tuple[Any, ...]) -> Any:
        if len(row) != len(entity.columns):
            raise ExecutionError(
                f"{entity.name} row has {len(row)} values, "
                f"expected {len(entity.columns)}"
            )
        try:
            record = entity.entity_cls.model_validate(
                dict(zip(entity.column_names, row))
            )
        except PydanticValidationError as exc:
            raise ExecutionError(
                f"Could not materialize {entity.name} from row: {exc}",
                original=exc,
            ) from exc
        record._bind(self)
        return record

    async def _fetch(
        self,
        conn: IConnection,
        statement: CompiledStatement,
        operation: str,
        entity: EntityDescriptor,
    ) -> list[tuple[Any, ...]]:
        async def run() -> list[tuple[Any, ...]]:
            started = time.perf_counter()
            try:
                rows = await conn.fetch(statement.sql, statement.args)
            except ExecutionError:
                _log_failure(statement, started)
                raise
            _log_statement(statement, started, rows=len(rows))
            return rows

        return await self.hooks.run(StatementEvent(operation, entity, statement), run)

    async def _execute(
        self,
        conn: IConnection,
        statement: CompiledStatement,
        entity: EntityDescriptor,
    ) -> int:
        async def run() -> int:
            started = time.perf_counter()
            try:
                affected = await conn.execute(statement.sql, statement.args)
            except ExecutionError:
                _log_failure(statement, started)
                raise
            _log_statement(statement, started, rows=affected)
            return affected

        return await self.hooks.run(
            StatementEvent("query.execute", entity, statement), run
        )

    def __repr__(self) -> str:
        return (
            f"QueryDispatcher(provider={self.provider!r}, mode={self.mode.value}, "
            f"dialect={self.compiler.dialect!r})"
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _log_statement(statement: CompiledStatement, started: float, *, rows: int) -> None:
    logger.debug(
        "Executed query",
        extra={
            "query": statement.sql,
            "query_args": list(statement.args),
            "duration_ms": _elapsed_ms(started),
            "rows": rows,
        },
    )


def _log_failure(statement: CompiledStatement, started: float) -> None:
    logger.error(
        "Query failed",
        extra={
            "query": statement.sql,
            "query_args": list(statement.args),
            "duration_ms": _elapsed_ms(started),
        },
    )


# ---------------------------------------------------------------------------
# Context default
# ---------------------------------------------------------------------------

_default_dispatcher_var: ContextVar[QueryDispatcher | None] = ContextVar(
    "typed_query_default_dispatcher", default=None
)


def set_default_dispatcher(
    dispatcher: QueryDispatcher | None,
) -> Token[QueryDispatcher | None]:
    """Install the dispatcher used by queries built without one."""
    return _default_dispatcher_var.set(dispatcher)


def reset_default_dispatcher(token: Token[QueryDispatcher | None]) -> None:
    _default_dispatcher_var.reset(token)


def get_default_dispatcher() -> QueryDispatcher | None:
    return _default_dispatcher_var.get()


def resolve_dispatcher(dispatcher: QueryDispatcher | None = None) -> QueryDispatcher:
    """*dispatcher* itself, else the context default.

    Raises:
        ConfigurationError: If neither is available.
    """
    if dispatcher is not None:
        return dispatcher
    default = _default_dispatcher_var.get()
    if default is None:
        raise ConfigurationError(
            "No dispatcher available: pass one to the query or call "
            "set_default_dispatcher() first"
        )
    return default
