"""
Query exception hierarchy.

All exceptions inherit from ``QueryError`` and provide ``to_dict()`` for
API-friendly error responses.  Build-time errors (``TypeMismatchError``,
``InvalidPredicateCompositionError``, ``RegistryError``,
``CompilationError``) are raised while a query is being constructed or
compiled and never reach the backend.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class QueryError(Exception):
    """Root exception for the typed-query toolkit."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class RegistryError(QueryError):
    """Invalid entity, column or association declaration."""


class UnknownColumnError(RegistryError):
    """
    Column name not declared on an entity.

    Uses fuzzy matching to suggest similar declared names.
    """

    def __init__(self, column: str, entity_name: str, available: list[str]) -> None:
        self.column = column
        self.entity_name = entity_name
        self.available = available
        self.suggestions = get_close_matches(column, available, n=3, cutoff=0.6)

        message = f"Unknown column '{column}' on '{entity_name}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_COLUMN",
            "column": self.column,
            "entity": self.entity_name,
            "suggestions": self.suggestions,
            "available": sorted(self.available),
        }


class UnknownAssociationError(RegistryError):
    """Association name not declared on an entity."""

    def __init__(
        self, association: str, entity_name: str, available: list[str]
    ) -> None:
        self.association = association
        self.entity_name = entity_name
        self.available = available
        self.suggestions = get_close_matches(association, available, n=3, cutoff=0.6)

        message = f"Unknown association '{association}' on '{entity_name}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_ASSOCIATION",
            "association": self.association,
            "entity": self.entity_name,
            "suggestions": self.suggestions,
            "available": sorted(self.available),
        }


class TypeMismatchError(QueryError):
    """An operand does not match the declared type of its column."""

    def __init__(self, column: str, expected: str, value: Any, reason: str = "") -> None:
        self.column = column
        self.expected = expected
        self.value = value
        message = (
            f"Column '{column}' expects {expected}, got "
            f"{type(value).__name__} {value!r}"
        )
        if reason:
            message += f" ({reason})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "TYPE_MISMATCH",
            "column": self.column,
            "expected": self.expected,
            "received": type(self.value).__name__,
        }


class InvalidPredicateCompositionError(QueryError):
    """Predicate pieces were combined in an unsupported way (e.g. dangling ``not_()``)."""


class CompilationError(QueryError):
    """The plan uses a construct the target SQL dialect cannot express."""


class ConfigurationError(QueryError):
    """Execution was requested without a usable dispatcher or connection."""


class RecordNotFoundError(QueryError):
    """A single-record fetch matched zero rows."""

    def __init__(self, entity_name: str, detail: str | None = None) -> None:
        self.entity_name = entity_name
        self.detail = detail
        message = f"No {entity_name} record found"
        if detail:
            message += f" ({detail})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "RECORD_NOT_FOUND",
            "entity": self.entity_name,
            "detail": self.detail,
        }


class AssociationNotLoadedError(QueryError):
    """
    An association was read without being preloaded.

    Raised outside production-like modes so N+1 patterns surface during
    development and testing.  Use ``preload_<name>()`` on the query, or the
    forced accessor ``await entity.<name>.force()``.
    """

    def __init__(self, entity_name: str, association: str) -> None:
        self.entity_name = entity_name
        self.association = association
        super().__init__(
            f"Association '{association}' on {entity_name} was not preloaded. "
            f"Call preload_{association}() on the query or use "
            f"'await entity.{association}.force()'."
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "ASSOCIATION_NOT_LOADED",
            "entity": self.entity_name,
            "association": self.association,
        }


class ExecutionError(QueryError):
    """
    The backend rejected or failed a statement.

    The driver exception is kept as ``original`` (and ``__cause__``); it is
    not reinterpreted or retried.
    """

    def __init__(
        self,
        message: str,
        *,
        statement: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        self.statement = statement
        self.original = original
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "EXECUTION_ERROR",
            "message": str(self),
            "statement": self.statement,
        }
