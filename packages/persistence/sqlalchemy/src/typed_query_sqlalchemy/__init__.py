"""SQLAlchemy backend adapter for typed-query."""

from __future__ import annotations

from .connection import SQLAlchemyConnection, to_text_clause
from .exceptions import SchemaError, SQLAlchemyExecutionError, TransactionError
from .provider import SQLAlchemyConnectionProvider
from .schema import build_metadata, build_table

__all__ = [
    "SQLAlchemyConnection",
    "SQLAlchemyConnectionProvider",
    "SQLAlchemyExecutionError",
    "SchemaError",
    "TransactionError",
    "build_metadata",
    "build_table",
    "to_text_clause",
]
