"""
SQL dialects.

The compiler output always uses ``$n`` positional placeholders; dialects
only cover constructs whose spelling or availability differs per backend.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..exceptions import CompilationError

if TYPE_CHECKING:
    from collections.abc import Callable

_GLOB_TRANSLATION = str.maketrans(
    {"%": "*", "_": "?", "*": "[*]", "?": "[?]", "[": "[[]"}
)


def like_to_glob(pattern: str) -> str:
    """Rewrite a LIKE pattern as the equivalent GLOB pattern."""
    return pattern.translate(_GLOB_TRANSLATION)


class SqlDialect:
    """PostgreSQL-flavoured defaults; subclasses override what differs."""

    name = "postgresql"
    supports_distinct_on = True

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def render_like(
        self, column: str, pattern: Any, bind: Callable[[Any], str], *, negated: bool
    ) -> str:
        keyword = "NOT LIKE" if negated else "LIKE"
        return f"{column} {keyword} {bind(pattern)}"

    def render_ilike(self, column: str, placeholder: str, *, negated: bool) -> str:
        keyword = "NOT ILIKE" if negated else "ILIKE"
        return f"{column} {keyword} {placeholder}"

    def render_distinct_on(self, column: str) -> str:
        if not self.supports_distinct_on:
            raise CompilationError(f"DISTINCT ON is not supported by {self.name}")
        return f"DISTINCT ON ({column})"

    def render_pagination(
        self, limit_placeholder: str | None, offset_placeholder: str | None
    ) -> list[str]:
        parts: list[str] = []
        if limit_placeholder is not None:
            parts.append(f"LIMIT {limit_placeholder}")
        if offset_placeholder is not None:
            parts.append(f"OFFSET {offset_placeholder}")
        return parts

    def render_truncate(self, table: str) -> str:
        return f"TRUNCATE TABLE {table}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class PostgresDialect(SqlDialect):
    name = "postgresql"


class SQLiteDialect(SqlDialect):
    name = "sqlite"
    supports_distinct_on = False

    def render_like(
        self, column: str, pattern: Any, bind: Callable[[Any], str], *, negated: bool
    ) -> str:
        # SQLite's LIKE ignores ASCII case; GLOB does not
        keyword = "NOT GLOB" if negated else "GLOB"
        if isinstance(pattern, str):
            pattern = like_to_glob(pattern)
        return f"{column} {keyword} {bind(pattern)}"

    def render_ilike(self, column: str, placeholder: str, *, negated: bool) -> str:
        keyword = "NOT LIKE" if negated else "LIKE"
        return f"lower({column}) {keyword} lower({placeholder})"

    def render_pagination(
        self, limit_placeholder: str | None, offset_placeholder: str | None
    ) -> list[str]:
        # OFFSET is only valid after a LIMIT clause
        if limit_placeholder is None and offset_placeholder is not None:
            return ["LIMIT -1", f"OFFSET {offset_placeholder}"]
        return super().render_pagination(limit_placeholder, offset_placeholder)

    def render_truncate(self, table: str) -> str:
        return f"DELETE FROM {table}"


_DIALECTS: dict[str, type[SqlDialect]] = {
    "postgresql": PostgresDialect,
    "postgres": PostgresDialect,
    "sqlite": SQLiteDialect,
}


def dialect_for(name: str | None) -> SqlDialect:
    """Return the dialect for a backend name (``None`` means PostgreSQL)."""
    if name is None:
        return PostgresDialect()
    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise CompilationError(
            f"Unknown SQL dialect '{name}'. Known: {', '.join(sorted(_DIALECTS))}"
        ) from None
