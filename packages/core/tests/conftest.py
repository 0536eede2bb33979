"""Shared fixtures for typed_query core tests."""

from __future__ import annotations

import pytest
from fake_backend import RecordingProvider

from typed_query import ExecutionMode, HookRegistry, QueryDispatcher

USER_ROWS = [
    (1, "Sally", 31, None, False),
    (2, "Bill", 17, "billy", False),
    (3, "John", 45, None, True),
]
TASK_ROWS = [
    (10, "Write report", 1, False, 2.5),
    (11, "Review report", 1, True, None),
    (12, "Ship it", 3, False, 4.0),
    (13, "Orphan", 99, False, None),
]
PROFILE_ROWS = [
    (100, "Sally's bio", 1),
]


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider(
        {"users": USER_ROWS, "tasks": TASK_ROWS, "profiles": PROFILE_ROWS}
    )


@pytest.fixture
def dispatcher(provider: RecordingProvider, hooks: HookRegistry) -> QueryDispatcher:
    """Strict dispatcher: unloaded associations raise."""
    return QueryDispatcher(provider, mode=ExecutionMode.TEST, hooks=hooks)


@pytest.fixture
def lazy_dispatcher(provider: RecordingProvider, hooks: HookRegistry) -> QueryDispatcher:
    """Production dispatcher: unloaded associations are fetched on access."""
    return QueryDispatcher(provider, mode=ExecutionMode.PRODUCTION, hooks=hooks)
