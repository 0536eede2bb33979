from enum import Enum


class ComparisonOperator(str, Enum):
    """Supported comparison operators for predicates."""

    # Standard comparison
    EQ = "="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="

    # Set membership
    IN = "in"
    NOT_IN = "not_in"

    # String matching
    LIKE = "like"
    NOT_LIKE = "not_like"
    ILIKE = "ilike"
    NOT_ILIKE = "not_ilike"

    # Null checks
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"

    @property
    def negated(self) -> "ComparisonOperator":
        """The operator selecting exactly the complementary rows."""
        return _NEGATIONS[self]

    @property
    def takes_sequence(self) -> bool:
        return self in (ComparisonOperator.IN, ComparisonOperator.NOT_IN)


_NEGATIONS: dict[ComparisonOperator, ComparisonOperator] = {
    ComparisonOperator.EQ: ComparisonOperator.NE,
    ComparisonOperator.NE: ComparisonOperator.EQ,
    ComparisonOperator.GT: ComparisonOperator.LE,
    ComparisonOperator.LE: ComparisonOperator.GT,
    ComparisonOperator.LT: ComparisonOperator.GE,
    ComparisonOperator.GE: ComparisonOperator.LT,
    ComparisonOperator.IN: ComparisonOperator.NOT_IN,
    ComparisonOperator.NOT_IN: ComparisonOperator.IN,
    ComparisonOperator.LIKE: ComparisonOperator.NOT_LIKE,
    ComparisonOperator.NOT_LIKE: ComparisonOperator.LIKE,
    ComparisonOperator.ILIKE: ComparisonOperator.NOT_ILIKE,
    ComparisonOperator.NOT_ILIKE: ComparisonOperator.ILIKE,
    ComparisonOperator.IS_NULL: ComparisonOperator.IS_NOT_NULL,
    ComparisonOperator.IS_NOT_NULL: ComparisonOperator.IS_NULL,
}


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"

    @property
    def reversed(self) -> "SortDirection":
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


class AggregateFunction(str, Enum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


class JoinKind(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
