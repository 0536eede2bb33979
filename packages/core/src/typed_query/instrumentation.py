"""
Statement hooks.

The dispatcher describes every statement it is about to send as a
:class:`StatementEvent` and hands it to :meth:`HookRegistry.run` together
with the call that actually talks to the backend.  Matching hooks wrap that
call, lowest priority outermost::

    async def count_statements(event, proceed):
        counter[event.operation] += 1
        return await proceed()

    hooks = HookRegistry()
    hooks.register(count_statements, operations=["query.preload"], entities=["Task"])
    dispatcher = QueryDispatcher(provider, hooks=hooks)

Operations are ``query.select``, ``query.aggregate``, ``query.preload`` and
``query.execute`` (destroy/delete).
"""

from __future__ import annotations

import fnmatch
import functools
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from .compiler import CompiledStatement
    from .registry import EntityDescriptor


@dataclass(frozen=True)
class StatementEvent:
    """One statement on its way to the backend."""

    operation: str
    entity: EntityDescriptor
    statement: CompiledStatement

    @property
    def sql(self) -> str:
        return self.statement.sql

    @property
    def args(self) -> tuple[Any, ...]:
        return self.statement.args

    @property
    def table(self) -> str:
        return self.entity.table


@runtime_checkable
class StatementHook(Protocol):
    async def __call__(
        self, event: StatementEvent, proceed: Callable[[], Awaitable[Any]]
    ) -> Any: ...


@dataclass(frozen=True, eq=False)
class HookRegistration:
    """
    A hook plus the statements it applies to.

    ``operations`` are glob patterns (``query.*``); ``entities`` are entity
    names or table names.  An empty filter matches everything.
    """

    hook: StatementHook
    priority: int = 0
    operations: tuple[str, ...] = ()
    entities: frozenset[str] = frozenset()

    def applies_to(self, event: StatementEvent) -> bool:
        if self.entities and not (
            event.entity.name in self.entities or event.table in self.entities
        ):
            return False
        return not self.operations or any(
            fnmatch.fnmatchcase(event.operation, pattern) for pattern in self.operations
        )


class HookRegistry:
    """Ordered set of statement hooks."""

    def __init__(self) -> None:
        self._registrations: list[HookRegistration] = []

    def register(
        self,
        hook: StatementHook,
        *,
        priority: int = 0,
        operations: Iterable[str] = (),
        entities: Iterable[str] = (),
    ) -> HookRegistration:
        registration = HookRegistration(
            hook, priority, tuple(operations), frozenset(entities)
        )
        self._registrations.append(registration)
        # stable: equal priorities keep registration order
        self._registrations.sort(key=lambda r: r.priority)
        return registration

    def unregister(self, registration: HookRegistration) -> None:
        self._registrations = [r for r in self._registrations if r is not registration]

    def matching(self, event: StatementEvent) -> list[HookRegistration]:
        return [r for r in self._registrations if r.applies_to(event)]

    async def run(
        self, event: StatementEvent, execute: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Run *execute* inside every hook that applies to *event*."""
        call = execute
        for registration in reversed(self.matching(event)):
            call = functools.partial(registration.hook, event, call)
        return await call()

    def clear(self) -> None:
        self._registrations.clear()

    def __len__(self) -> int:
        return len(self._registrations)


_hook_registry_var: ContextVar[HookRegistry | None] = ContextVar(
    "typed_query_hook_registry", default=None
)


def get_hook_registry() -> HookRegistry:
    """Hooks used by dispatchers constructed without ``hooks=``.

    Each context gets its own empty registry on first use.
    """
    registry = _hook_registry_var.get()
    if registry is None:
        registry = HookRegistry()
        _hook_registry_var.set(registry)
    return registry


def set_hook_registry(registry: HookRegistry | None) -> Token[HookRegistry | None]:
    return _hook_registry_var.set(registry)


def reset_hook_registry(token: Token[HookRegistry | None]) -> None:
    _hook_registry_var.reset(token)
