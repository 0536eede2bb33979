"""Exceptions for the SQLAlchemy backend adapter."""

from __future__ import annotations

from typed_query.exceptions import ExecutionError, RegistryError


class SQLAlchemyExecutionError(ExecutionError):
    """Base exception for statement failures reported by SQLAlchemy."""


class TransactionError(SQLAlchemyExecutionError):
    """Raised when checking out, committing or rolling back a connection fails."""


class SchemaError(RegistryError):
    """Raised when entity metadata cannot be expressed as SQLAlchemy tables."""


__all__: list[str] = [
    "SQLAlchemyExecutionError",
    "SchemaError",
    "TransactionError",
]
