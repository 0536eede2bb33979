from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError
from sample_models import Profile, Task, User, UserQuery

from typed_query import (
    AssociationKind,
    AssociationNotLoadedError,
    Entity,
    EntityRegistry,
    Query,
    RegistryError,
    UnknownAssociationError,
    UnknownColumnError,
    belongs_to,
    default_registry,
    has_many,
)


def test_columns_follow_declaration_order() -> None:
    descriptor = User.descriptor()
    assert descriptor.table == "users"
    assert descriptor.column_names == ("id", "name", "age", "nickname", "admin")
    assert descriptor.primary_key == "id"
    nickname = descriptor.column("nickname")
    assert nickname.python_type is str
    assert nickname.nullable
    assert nickname.type_name == "str | None"


def test_unknown_column_suggests_close_names() -> None:
    with pytest.raises(UnknownColumnError) as exc_info:
        User.descriptor().column("nmae")
    assert exc_info.value.suggestions == ["name"]
    assert "Did you mean: name?" in str(exc_info.value)


def test_registry_resolves_by_name_and_class() -> None:
    assert default_registry.resolve("Task") is Task.descriptor()
    assert default_registry.resolve(Task) is Task.descriptor()
    with pytest.raises(RegistryError, match="Unknown entity"):
        default_registry.resolve("Nope")


def test_has_many_keys() -> None:
    resolved = User.descriptor().resolve_association("tasks")
    assert resolved.kind is AssociationKind.HAS_MANY
    assert resolved.parent_ref.qualified == "users.id"
    assert resolved.child_ref.qualified == "tasks.user_id"


def test_belongs_to_keys_with_string_target() -> None:
    resolved = Profile.descriptor().resolve_association("user")
    assert resolved.kind is AssociationKind.BELONGS_TO
    assert resolved.parent_ref.qualified == "profiles.user_id"
    assert resolved.child_ref.qualified == "users.id"
    assert resolved.target is User.descriptor()


def test_unknown_association() -> None:
    with pytest.raises(UnknownAssociationError) as exc_info:
        User.descriptor().resolve_association("task")
    assert exc_info.value.suggestions == ["tasks"]


def test_unsupported_column_type_is_rejected() -> None:
    with pytest.raises(RegistryError, match="unsupported type"):

        class Bad(Entity):
            __tablename__ = "bad"
            __registry__ = EntityRegistry()

            id: int
            tags: list


def test_mismatched_association_key_types() -> None:
    registry = EntityRegistry()

    class Owner(Entity):
        __tablename__ = "owners"
        __registry__ = registry

        id: str
        items = has_many("Item")

    class Item(Entity):
        __tablename__ = "items"
        __registry__ = registry

        id: int
        owner_id: int

    with pytest.raises(RegistryError, match="joins"):
        Owner.descriptor().resolve_association("items")


def test_re_registering_a_name_replaces_it(caplog) -> None:
    registry = EntityRegistry()

    def declare():
        class Widget(Entity):
            __tablename__ = "widgets"
            __registry__ = registry

            id: int

        return Widget

    first = declare()
    with caplog.at_level(logging.WARNING, logger="typed_query.registry"):
        second = declare()
    assert registry.resolve("Widget").entity_cls is second
    assert first is not second
    assert "re-registered" in caplog.text


def test_default_foreign_keys() -> None:
    assert User.descriptor().association("tasks").foreign_key == "user_id"
    assert Task.descriptor().association("user").foreign_key == "user_id"


def test_explicit_foreign_key() -> None:
    registry = EntityRegistry()

    class Team(Entity):
        __tablename__ = "teams"
        __registry__ = registry

        id: int
        members = has_many("Member", foreign_key="squad_id")

    class Member(Entity):
        __tablename__ = "members"
        __registry__ = registry

        id: int
        squad_id: int
        squad = belongs_to(Team, foreign_key="squad_id")

    assert Team.descriptor().resolve_association("members").child_ref.qualified == (
        "members.squad_id"
    )
    assert Member.descriptor().resolve_association("squad").parent_ref.qualified == (
        "members.squad_id"
    )


def test_entities_are_frozen_and_compare_by_value() -> None:
    sally = User(id=1, name="Sally", age=31)
    with pytest.raises(ValidationError):
        sally.age = 32  # type: ignore[misc]
    assert sally == User(id=1, name="Sally", age=31)
    assert sally != User(id=1, name="Sally", age=30)
    assert hash(sally) == hash(User(id=1, name="Sally", age=30))
    assert sally.primary_key_value == 1


def test_unloaded_association_value_raises() -> None:
    sally = User(id=1, name="Sally", age=31)
    proxy = sally.tasks
    assert not proxy.is_loaded
    with pytest.raises(AssociationNotLoadedError) as exc_info:
        _ = proxy.value
    assert "preload_tasks()" in str(exc_info.value)
    assert "unloaded" in repr(proxy)


def test_declared_query_class_is_the_default() -> None:
    assert default_registry.query_class(User) is UserQuery
    assert Query.for_entity(User) is UserQuery
    generated = Query.for_entity(Profile)
    assert generated.entity is Profile
    assert Query.for_entity(Profile) is generated
