from __future__ import annotations

import pytest
from sample_models import Task, TaskQuery, User, UserQuery

from typed_query import (
    AggregateFunction,
    InvalidPredicateCompositionError,
    JoinKind,
    JoinSpec,
    PreloadSpec,
    QueryPlan,
    SortDirection,
)


def test_mutators_return_new_queries() -> None:
    base = UserQuery()
    narrowed = base.age.gte(21)
    assert base.plan.predicates == ()
    assert len(narrowed.plan.predicates) == 1
    assert type(narrowed) is UserQuery
    assert narrowed is not base


def test_named_scopes_compose() -> None:
    query = UserQuery().adults().name.asc_order()
    assert isinstance(query, UserQuery)
    assert query.plan.to_dict() == {
        "table": "users",
        "where": [{"op": ">=", "attr": "users.age", "val": 18}],
        "order_by": ["users.name ASC"],
    }


def test_none_cannot_be_cleared() -> None:
    plan = (
        UserQuery().none().age.gt(1).reset_order().limit(3).offset(1).distinct().plan
    )
    assert plan.is_none
    assert plan.limit == 3


def test_limit_and_offset_validation() -> None:
    with pytest.raises(ValueError, match=">= 0"):
        UserQuery().limit(-1)
    with pytest.raises(TypeError, match="must be an int"):
        UserQuery().offset("2")  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        UserQuery().limit(True)


def test_reversed_order() -> None:
    users = User.descriptor()
    plan = QueryPlan(users)
    assert plan.with_reversed_order().order_by[0].direction is SortDirection.DESC
    assert plan.with_reversed_order().order_by[0].column == users.pk

    ordered = plan.with_order(users.ref("name"), SortDirection.ASC).with_order(
        users.ref("age"), SortDirection.DESC
    )
    reversed_plan = ordered.with_reversed_order()
    assert [o.direction for o in reversed_plan.order_by] == [
        SortDirection.DESC,
        SortDirection.ASC,
    ]


def test_predicate_on_foreign_table_is_rejected() -> None:
    title = Task.descriptor().ref("title").eq("x")
    with pytest.raises(InvalidPredicateCompositionError, match="association"):
        UserQuery().where(title)


def test_repeated_join_updates_kind_and_merges_scopes() -> None:
    query = (
        UserQuery()
        .tasks(lambda t: t.done(False))
        .left_join_tasks()
        .tasks(lambda t: t.title.like("W%"))
    )
    assert len(query.plan.joins) == 1
    join = query.plan.joins[0]
    assert join.kind is JoinKind.LEFT
    assert join.plan is not None
    assert len(join.plan.predicates) == 2


def test_join_spec_direct() -> None:
    users = User.descriptor()
    plan = QueryPlan(users).with_join(JoinSpec("tasks")).with_join(
        JoinSpec("tasks", JoinKind.LEFT)
    )
    assert plan.joins == (JoinSpec("tasks", JoinKind.LEFT),)
    assert plan.join_for("profile") is None


def test_preloading_again_replaces() -> None:
    query = UserQuery().preload_tasks().preload_profile().preload_tasks(
        TaskQuery().pending()
    )
    assert [p.association for p in query.plan.preloads] == ["profile", "tasks"]
    tasks = query.plan.preloads[-1]
    assert isinstance(tasks, PreloadSpec)
    assert tasks.plan is not None
    assert tasks.plan.entity is Task.descriptor()


def test_for_rows_drops_aggregate() -> None:
    plan = QueryPlan(User.descriptor()).with_aggregate(AggregateFunction.COUNT)
    assert plan.aggregate is not None
    assert plan.for_rows().aggregate is None
    assert "aggregate" not in plan.for_rows().to_dict()
