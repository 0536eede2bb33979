"""SQL compilation of query plans."""

from .compiler import CompiledStatement, SqlCompiler, compile_plan
from .dialects import PostgresDialect, SqlDialect, SQLiteDialect, dialect_for
from .operators import DEFAULT_SQL_REGISTRY, build_default_sql_registry
from .strategy import SqlOperator, SqlOperatorRegistry

__all__ = [
    "CompiledStatement",
    "SqlCompiler",
    "compile_plan",
    "SqlDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "dialect_for",
    "SqlOperator",
    "SqlOperatorRegistry",
    "DEFAULT_SQL_REGISTRY",
    "build_default_sql_registry",
]
