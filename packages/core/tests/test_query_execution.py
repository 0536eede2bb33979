from __future__ import annotations

import logging
from collections import Counter
from typing import Any

import pytest
from fake_backend import RecordingProvider
from sample_models import (
    PROFILE_COLUMNS,
    TASK_COLUMNS,
    USER_COLUMNS,
    Task,
    TaskQuery,
    User,
    UserQuery,
)

from typed_query import (
    AssociationNotLoadedError,
    ConfigurationError,
    ExecutionError,
    ExecutionMode,
    HookRegistry,
    QueryDispatcher,
    RecordNotFoundError,
    StatementEvent,
    TypeMismatchError,
    reset_default_dispatcher,
    set_default_dispatcher,
)

SELECT_USERS = f"SELECT {USER_COLUMNS} FROM users"
SELECT_TASKS = f"SELECT {TASK_COLUMNS} FROM tasks"


class CountingHook:
    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()

    async def __call__(self, event: StatementEvent, proceed: Any) -> Any:
        self.calls[event.operation] += 1
        return await proceed()


@pytest.mark.asyncio
async def test_building_queries_never_touches_the_backend(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    query = UserQuery(dispatcher).age.gte(21).preload_tasks().tasks(lambda t: t.pending())
    query.name.asc_order().limit(3).to_sql()
    del query
    assert provider.connections == 0
    assert provider.statements == []


@pytest.mark.asyncio
async def test_all_materializes_rows_in_column_order(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    users = await UserQuery(dispatcher).all()
    assert [u.name for u in users] == ["Sally", "Bill", "John"]
    assert users[1] == User(id=2, name="Bill", age=17, nickname="billy", admin=False)
    assert provider.statements == [(SELECT_USERS, ())]
    assert provider.connections == 1


@pytest.mark.asyncio
async def test_async_iteration_runs_the_query(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    names = [user.name async for user in UserQuery(dispatcher).admin(True)]
    assert names == ["Sally", "Bill", "John"]
    assert provider.statements == [(f"{SELECT_USERS} WHERE users.admin = $1", (True,))]


@pytest.mark.asyncio
async def test_first_and_last(provider: RecordingProvider, dispatcher: QueryDispatcher) -> None:
    first = await UserQuery(dispatcher).first()
    last = await UserQuery(dispatcher).name.asc_order().last()
    assert first.id == 1
    assert last is not None
    assert provider.statements == [
        (f"{SELECT_USERS} LIMIT $1", (1,)),
        (f"{SELECT_USERS} ORDER BY users.name DESC LIMIT $1", (1,)),
    ]


@pytest.mark.asyncio
async def test_last_without_order_uses_primary_key(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    await UserQuery(dispatcher).last_or_none()
    assert provider.sql == [f"{SELECT_USERS} ORDER BY users.id DESC LIMIT $1"]


@pytest.mark.asyncio
async def test_zero_rows_for_single_record_fetches() -> None:
    dispatcher = QueryDispatcher(RecordingProvider(), mode=ExecutionMode.TEST)
    assert await UserQuery(dispatcher).first_or_none() is None
    assert await UserQuery(dispatcher).last_or_none() is None
    with pytest.raises(RecordNotFoundError):
        await UserQuery(dispatcher).first()
    with pytest.raises(RecordNotFoundError):
        await UserQuery(dispatcher).last()
    with pytest.raises(RecordNotFoundError, match="id=9999"):
        await UserQuery(dispatcher).find(9999)
    assert await UserQuery(dispatcher).all() == []


@pytest.mark.asyncio
async def test_find_filters_by_primary_key(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    await UserQuery(dispatcher).find(4)
    assert provider.statements == [
        (f"{SELECT_USERS} WHERE users.id = $1 LIMIT $2", (4, 1)),
    ]


@pytest.mark.asyncio
async def test_find_validates_the_key_before_executing(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    with pytest.raises(TypeMismatchError):
        await UserQuery(dispatcher).find("4")
    assert provider.statements == []


@pytest.mark.asyncio
async def test_aggregates(provider: RecordingProvider, dispatcher: QueryDispatcher) -> None:
    provider.scalar = 3
    assert await UserQuery(dispatcher).age.gte(18).select_count() == 3
    provider.scalar = None
    assert await UserQuery(dispatcher).select_count() == 0
    assert await TaskQuery(dispatcher).score.select_sum() is None
    provider.scalar = 2.5
    assert await TaskQuery(dispatcher).score.select_min() == 2.5
    provider.scalar = "45"
    assert await UserQuery(dispatcher).age.select_max() == 45
    assert provider.sql == [
        "SELECT COUNT(*) FROM users WHERE users.age >= $1",
        "SELECT COUNT(*) FROM users",
        "SELECT SUM(tasks.score) FROM tasks",
        "SELECT MIN(tasks.score) FROM tasks",
        "SELECT MAX(users.age) FROM users",
    ]


@pytest.mark.asyncio
async def test_sum_and_average_need_numeric_columns(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    with pytest.raises(TypeMismatchError, match="numeric"):
        await UserQuery(dispatcher).name.select_sum()
    with pytest.raises(TypeMismatchError, match="numeric"):
        await UserQuery(dispatcher).admin.select_average()
    assert provider.statements == []


@pytest.mark.asyncio
async def test_destroy_all_ignores_filters(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    await UserQuery(dispatcher).name("Sally").none().destroy_all()
    assert provider.statements == [("TRUNCATE TABLE users", ())]


@pytest.mark.asyncio
async def test_entity_delete_uses_its_dispatcher(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    sally = await UserQuery(dispatcher).first()
    await sally.delete()
    assert provider.statements[-1] == ("DELETE FROM users WHERE users.id = $1", (1,))


@pytest.mark.asyncio
async def test_preload_has_many_attaches_by_key(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    sally, bill, john = await UserQuery(dispatcher).preload_tasks().all()
    assert [t.id for t in sally.tasks.value] == [10, 11]
    assert bill.tasks.value == []
    assert [t.id for t in await john.tasks] == [12]
    assert provider.statements == [
        (SELECT_USERS, ()),
        (f"{SELECT_TASKS} WHERE tasks.user_id IN ($1, $2, $3)", (1, 2, 3)),
    ]
    assert provider.connections == 1


@pytest.mark.asyncio
async def test_preload_belongs_to_dedupes_keys(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    tasks = await TaskQuery(dispatcher).preload_user().all()
    assert provider.statements[1] == (
        f"{SELECT_USERS} WHERE users.id IN ($1, $2, $3)",
        (1, 3, 99),
    )
    owners = {task.id: task.user.value for task in tasks}
    assert owners[10].name == "Sally"
    assert owners[12].name == "John"
    assert owners[13] is None


@pytest.mark.asyncio
async def test_preload_has_one(provider: RecordingProvider, dispatcher: QueryDispatcher) -> None:
    sally, bill, _ = await UserQuery(dispatcher).preload_profile().all()
    assert sally.profile.value.bio == "Sally's bio"
    assert bill.profile.value is None
    assert provider.sql[1] == (
        f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE profiles.user_id IN ($1, $2, $3)"
    )


@pytest.mark.asyncio
async def test_nested_preloads_with_filters(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    users = await (
        UserQuery(dispatcher)
        .preload_tasks(TaskQuery().pending().title.asc_order().preload_user())
        .all()
    )
    assert provider.statements[1] == (
        f"{SELECT_TASKS} WHERE tasks.user_id IN ($1, $2, $3) AND tasks.done = $4 "
        f"ORDER BY tasks.title ASC",
        (1, 2, 3, False),
    )
    assert provider.statements[2][0].startswith(f"{SELECT_USERS} WHERE users.id IN")
    assert len(provider.statements) == 3
    first_task = users[0].tasks.value[0]
    assert first_task.user.value.name == "Sally"


@pytest.mark.asyncio
async def test_preload_block_form(provider: RecordingProvider, dispatcher: QueryDispatcher) -> None:
    await UserQuery(dispatcher).preload_tasks(lambda t: t.title.like("W%")).all()
    assert provider.statements[1][1] == (1, 2, 3, "W%")


@pytest.mark.asyncio
async def test_preload_issues_one_query_regardless_of_parent_count(
    hooks: HookRegistry,
) -> None:
    counter = CountingHook()
    hooks.register(counter, operations=["query.*"])
    many_users = [(i, f"user{i}", 20 + i, None, False) for i in range(1, 51)]
    many_tasks = [(100 + i, f"task{i}", i, False, None) for i in range(1, 51)]
    provider = RecordingProvider({"users": many_users, "tasks": many_tasks})
    dispatcher = QueryDispatcher(provider, mode=ExecutionMode.TEST, hooks=hooks)

    users = await UserQuery(dispatcher).preload_tasks().all()

    assert len(users) == 50
    assert all(len(u.tasks.value) == 1 for u in users)
    assert counter.calls == {"query.select": 1, "query.preload": 1}


@pytest.mark.asyncio
async def test_preload_with_no_parents_issues_no_query() -> None:
    provider = RecordingProvider({"tasks": [(10, "t", 1, False, None)]})
    dispatcher = QueryDispatcher(provider, mode=ExecutionMode.TEST)
    assert await UserQuery(dispatcher).preload_tasks().all() == []
    assert provider.sql == [SELECT_USERS]


@pytest.mark.asyncio
async def test_strict_policy_raises_without_querying(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    sally = await UserQuery(dispatcher).first()
    with pytest.raises(AssociationNotLoadedError):
        await sally.tasks
    assert len(provider.statements) == 1


@pytest.mark.asyncio
async def test_forced_access_fetches_once_and_caches(
    provider: RecordingProvider, dispatcher: QueryDispatcher
) -> None:
    sally = await UserQuery(dispatcher).first()
    tasks = await sally.tasks.force()
    assert [t.id for t in tasks] == [10, 11]
    assert provider.statements[-1] == (
        f"{SELECT_TASKS} WHERE tasks.user_id IN ($1)",
        (1,),
    )
    assert await sally.tasks == tasks
    assert await sally.tasks.force() == tasks
    assert len(provider.statements) == 2


@pytest.mark.asyncio
async def test_lazy_policy_fetches_and_warns(
    provider: RecordingProvider, lazy_dispatcher: QueryDispatcher, caplog
) -> None:
    sally = await UserQuery(lazy_dispatcher).first()
    with caplog.at_level(logging.WARNING, logger="typed_query.policies"):
        profile = await sally.profile
    assert profile.bio == "Sally's bio"
    assert "Lazy-loading User.profile" in caplog.text
    assert await sally.profile is profile
    assert len(provider.statements) == 2


@pytest.mark.asyncio
async def test_lazy_belongs_to_without_a_match_is_none() -> None:
    provider = RecordingProvider()
    dispatcher = QueryDispatcher(provider, mode=ExecutionMode.PRODUCTION)
    task = Task(id=1, title="t", user_id=5)
    task._bind(dispatcher)
    assert await task.user is None
    assert provider.sql == [f"{SELECT_USERS} WHERE users.id IN ($1)"]


@pytest.mark.asyncio
async def test_default_dispatcher(provider: RecordingProvider) -> None:
    with pytest.raises(ConfigurationError):
        await UserQuery().all()

    token = set_default_dispatcher(QueryDispatcher(provider, mode=ExecutionMode.TEST))
    try:
        assert len(await User.query().all()) == 3
    finally:
        reset_default_dispatcher(token)


@pytest.mark.asyncio
async def test_backend_errors_propagate_unchanged(
    provider: RecordingProvider, dispatcher: QueryDispatcher, caplog
) -> None:
    error = ExecutionError("relation does not exist", statement=SELECT_USERS)
    provider.error = error
    with caplog.at_level(logging.ERROR, logger="typed_query.dispatcher"):
        with pytest.raises(ExecutionError) as exc_info:
            await UserQuery(dispatcher).all()
    assert exc_info.value is error
    assert "Query failed" in caplog.text


@pytest.mark.asyncio
async def test_statements_are_logged_with_timing(
    dispatcher: QueryDispatcher, caplog
) -> None:
    with caplog.at_level(logging.DEBUG, logger="typed_query.dispatcher"):
        await UserQuery(dispatcher).name("Sally").all()
    record = next(r for r in caplog.records if r.getMessage() == "Executed query")
    assert record.query == f"{SELECT_USERS} WHERE users.name = $1"
    assert record.query_args == ["Sally"]
    assert record.duration_ms >= 0


@pytest.mark.asyncio
async def test_dialect_follows_the_provider() -> None:
    provider = RecordingProvider(dialect_name="sqlite")
    dispatcher = QueryDispatcher(provider, mode=ExecutionMode.TEST)
    await UserQuery(dispatcher).name.ilike("s%").destroy_all()
    assert dispatcher.compiler.dialect.name == "sqlite"
    assert provider.sql == ["DELETE FROM users"]
    assert UserQuery(dispatcher).offset(1).to_sql().sql.endswith("LIMIT -1 OFFSET $1")
