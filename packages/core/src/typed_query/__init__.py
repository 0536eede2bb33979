"""typed-query: type-safe, lazily evaluated SQL query builder.

Entities are pydantic models; queries compile to ``$n``-parameterized SQL and
run through a dispatcher over any async connection provider.
"""

from __future__ import annotations

# ── Compilation ──────────────────────────────────────────────────
from .compiler import (
    CompiledStatement,
    PostgresDialect,
    SqlCompiler,
    SqlDialect,
    SQLiteDialect,
    SqlOperator,
    SqlOperatorRegistry,
    compile_plan,
    dialect_for,
)

# ── Configuration & logging ──────────────────────────────────────
from .config import ExecutionMode, QuerySettings

# ── Execution ────────────────────────────────────────────────────
from .dispatcher import (
    QueryDispatcher,
    get_default_dispatcher,
    reset_default_dispatcher,
    resolve_dispatcher,
    set_default_dispatcher,
)

# ── Entities ─────────────────────────────────────────────────────
from .entity import AssociationProxy, Entity, belongs_to, has_many, has_one

# ── Errors ───────────────────────────────────────────────────────
from .exceptions import (
    AssociationNotLoadedError,
    CompilationError,
    ConfigurationError,
    ExecutionError,
    InvalidPredicateCompositionError,
    QueryError,
    RecordNotFoundError,
    RegistryError,
    TypeMismatchError,
    UnknownAssociationError,
    UnknownColumnError,
)
from .instrumentation import (
    HookRegistration,
    HookRegistry,
    StatementEvent,
    StatementHook,
    get_hook_registry,
    reset_hook_registry,
    set_hook_registry,
)
from .log_config import JsonLogFormatter, PrettyLogFormatter, configure_logging
from .operators import AggregateFunction, ComparisonOperator, JoinKind, SortDirection
from .plan import JoinSpec, OrderClause, PreloadSpec, QueryPlan
from .policies import (
    LazyLoadOnUnloaded,
    RaiseOnUnloaded,
    UnloadedAssociationPolicy,
    policy_for_mode,
)
from .ports import IConnection, IConnectionProvider

# ── Query building ───────────────────────────────────────────────
from .predicates import (
    ColumnRef,
    Comparison,
    Conjunction,
    DanglingNegationError,
    Negation,
    NegationPending,
    Predicate,
)
from .query import ColumnQuery, NegatedColumnQuery, Query
from .registry import (
    AssociationDescriptor,
    AssociationKind,
    ColumnDescriptor,
    EntityDescriptor,
    EntityRegistry,
    default_registry,
)

__all__ = [
    # Compilation
    "CompiledStatement",
    "PostgresDialect",
    "SqlCompiler",
    "SqlDialect",
    "SQLiteDialect",
    "SqlOperator",
    "SqlOperatorRegistry",
    "compile_plan",
    "dialect_for",
    # Configuration & logging
    "ExecutionMode",
    "QuerySettings",
    "JsonLogFormatter",
    "PrettyLogFormatter",
    "configure_logging",
    # Execution
    "QueryDispatcher",
    "get_default_dispatcher",
    "reset_default_dispatcher",
    "resolve_dispatcher",
    "set_default_dispatcher",
    "IConnection",
    "IConnectionProvider",
    "LazyLoadOnUnloaded",
    "RaiseOnUnloaded",
    "UnloadedAssociationPolicy",
    "policy_for_mode",
    "HookRegistration",
    "HookRegistry",
    "StatementEvent",
    "StatementHook",
    "get_hook_registry",
    "reset_hook_registry",
    "set_hook_registry",
    # Entities
    "AssociationProxy",
    "Entity",
    "belongs_to",
    "has_many",
    "has_one",
    "AssociationDescriptor",
    "AssociationKind",
    "ColumnDescriptor",
    "EntityDescriptor",
    "EntityRegistry",
    "default_registry",
    # Errors
    "AssociationNotLoadedError",
    "CompilationError",
    "ConfigurationError",
    "DanglingNegationError",
    "ExecutionError",
    "InvalidPredicateCompositionError",
    "QueryError",
    "RecordNotFoundError",
    "RegistryError",
    "TypeMismatchError",
    "UnknownAssociationError",
    "UnknownColumnError",
    # Query building
    "AggregateFunction",
    "ColumnQuery",
    "ColumnRef",
    "Comparison",
    "ComparisonOperator",
    "Conjunction",
    "JoinKind",
    "JoinSpec",
    "NegatedColumnQuery",
    "Negation",
    "NegationPending",
    "OrderClause",
    "Predicate",
    "PreloadSpec",
    "Query",
    "QueryPlan",
    "SortDirection",
]
