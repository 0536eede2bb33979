"""
Entity base class and association declarations.

Entities are frozen pydantic models.  Declaring a subclass with a
``__tablename__`` registers its columns (the annotated fields, in
declaration order) and associations in the entity registry::

    class User(Entity):
        __tablename__ = "users"

        id: int
        name: str
        age: int
        admin: bool = False

        tasks = has_many("Task")             # tasks.user_id -> users.id


    class Task(Entity):
        __tablename__ = "tasks"

        id: int
        title: str
        user_id: int

        user = belongs_to(User)              # tasks.user_id -> users.id

Association attributes return an :class:`AssociationProxy`.  Preloaded data
can be read synchronously through ``.value``; ``await entity.tasks``
applies the loading dispatcher's unloaded-association policy and
``await entity.tasks.force()`` always fetches when needed.
"""

from __future__ import annotations

import re
import types
from typing import TYPE_CHECKING, Any, ClassVar, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, PrivateAttr

from .exceptions import AssociationNotLoadedError, RegistryError
from .registry import (
    AssociationDescriptor,
    AssociationKind,
    ColumnDescriptor,
    EntityDescriptor,
    EntityRegistry,
    default_registry,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from .dispatcher import QueryDispatcher
    from .query import Query

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class AssociationField:
    """Class-level association declaration; also the instance accessor."""

    def __init__(
        self,
        kind: AssociationKind,
        target: str | type[Any],
        foreign_key: str | None = None,
    ) -> None:
        self.kind = kind
        self.target = target
        self._foreign_key = foreign_key
        self.name = ""
        self.descriptor: AssociationDescriptor | None = None

    def __set_name__(self, owner: type[Any], name: str) -> None:
        self.name = name
        if self._foreign_key is not None:
            foreign_key = self._foreign_key
        elif self.kind is AssociationKind.BELONGS_TO:
            foreign_key = f"{name}_id"
        else:
            foreign_key = f"{_snake_case(owner.__name__)}_id"
        self.descriptor = AssociationDescriptor(name, self.kind, self.target, foreign_key)

    def __get__(self, instance: Entity | None, owner: type[Any]) -> Any:
        if instance is None:
            return self
        return AssociationProxy(instance, self.name)


def has_many(target: str | type[Any], *, foreign_key: str | None = None) -> Any:
    """Declare a one-to-many association (foreign key on the target)."""
    return AssociationField(AssociationKind.HAS_MANY, target, foreign_key)


def has_one(target: str | type[Any], *, foreign_key: str | None = None) -> Any:
    """Declare a one-to-one association (foreign key on the target)."""
    return AssociationField(AssociationKind.HAS_ONE, target, foreign_key)


def belongs_to(target: str | type[Any], *, foreign_key: str | None = None) -> Any:
    """Declare a many-to-one association (foreign key on this entity)."""
    return AssociationField(AssociationKind.BELONGS_TO, target, foreign_key)


class _EntityState:
    """Mutable bookkeeping kept outside the frozen field values."""

    __slots__ = ("associations", "dispatcher")

    def __init__(self) -> None:
        self.dispatcher: QueryDispatcher | None = None
        self.associations: dict[str, Any] = {}


class Entity(BaseModel):
    """Base class for mapped records."""

    model_config = ConfigDict(frozen=True, ignored_types=(AssociationField,))

    __tablename__: ClassVar[str | None] = None
    __primary_key__: ClassVar[str] = "id"
    __registry__: ClassVar[EntityRegistry] = default_registry

    _state: _EntityState = PrivateAttr(default_factory=_EntityState)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        if cls.__dict__.get("__tablename__") is None:
            return
        cls.__registry__.register(describe_entity(cls))

    @classmethod
    def descriptor(cls) -> EntityDescriptor:
        return cls.__registry__.describe(cls)

    @classmethod
    def query(cls, dispatcher: QueryDispatcher | None = None) -> Query[Any]:
        """A fresh query over this entity using its default query class."""
        from .query import Query

        return Query.for_entity(cls)(dispatcher)

    @property
    def primary_key_value(self) -> Any:
        return getattr(self, self.__primary_key__)

    async def delete(self) -> None:
        """``DELETE`` this record by primary key."""
        from .dispatcher import resolve_dispatcher

        await resolve_dispatcher(self._state.dispatcher).delete(self)

    # -- association bookkeeping --------------------------------------------

    def _bind(self, dispatcher: QueryDispatcher) -> None:
        self._state.dispatcher = dispatcher

    def _attach(self, association: str, value: Any) -> None:
        self._state.associations[association] = value

    def _is_loaded(self, association: str) -> bool:
        return association in self._state.associations

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return type(self) is type(other) and self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((type(self), self.primary_key_value))


class AssociationProxy:
    """
    Access to one association of one entity.

    ``await proxy`` returns the loaded value or applies the dispatcher's
    unloaded-association policy; ``await proxy.force()`` fetches when
    unloaded regardless of policy.
    """

    __slots__ = ("_entity", "_name")

    def __init__(self, entity: Entity, name: str) -> None:
        self._entity = entity
        self._name = name

    @property
    def is_loaded(self) -> bool:
        return self._entity._is_loaded(self._name)

    @property
    def value(self) -> Any:
        """The preloaded value; never performs I/O."""
        if not self.is_loaded:
            raise AssociationNotLoadedError(type(self._entity).__name__, self._name)
        return self._entity._state.associations[self._name]

    def __await__(self) -> Generator[Any, None, Any]:
        return self._resolve().__await__()

    async def _resolve(self) -> Any:
        if self.is_loaded:
            return self.value
        from .dispatcher import resolve_dispatcher

        dispatcher = resolve_dispatcher(self._entity._state.dispatcher)
        return await dispatcher.policy.on_unloaded(
            self._entity,
            self._name,
            lambda: dispatcher.load_association(self._entity, self._name),
        )

    async def force(self) -> Any:
        """Return the association, fetching it once if it was not preloaded."""
        if self.is_loaded:
            return self.value
        from .dispatcher import resolve_dispatcher

        dispatcher = resolve_dispatcher(self._entity._state.dispatcher)
        return await dispatcher.load_association(self._entity, self._name)

    def __repr__(self) -> str:
        state = "loaded" if self.is_loaded else "unloaded"
        return f"<AssociationProxy {type(self._entity).__name__}.{self._name} {state}>"


# ---------------------------------------------------------------------------
# Descriptor construction
# ---------------------------------------------------------------------------


def _unwrap_optional(annotation: Any, field_name: str) -> tuple[type[Any], bool]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = get_args(annotation)
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1 and len(args) == 2:
            return non_none[0], True
        raise RegistryError(
            f"Column '{field_name}' must be a single type or 'X | None', "
            f"got {annotation!r}"
        )
    if not isinstance(annotation, type):
        raise RegistryError(f"Column '{field_name}' has unsupported annotation {annotation!r}")
    return annotation, False


def describe_entity(entity_cls: type[Entity]) -> EntityDescriptor:
    """Build the registry descriptor for an entity class."""
    columns: list[ColumnDescriptor] = []
    for position, (name, info) in enumerate(entity_cls.model_fields.items()):
        python_type, nullable = _unwrap_optional(info.annotation, name)
        columns.append(ColumnDescriptor(name, python_type, nullable, position))

    associations: dict[str, AssociationDescriptor] = {}
    for base in reversed(entity_cls.__mro__):
        for value in vars(base).values():
            if isinstance(value, AssociationField) and value.descriptor is not None:
                associations[value.name] = value.descriptor

    table = entity_cls.__dict__["__tablename__"]
    return EntityDescriptor(
        entity_cls=entity_cls,
        table=table,
        columns=tuple(columns),
        primary_key=entity_cls.__primary_key__,
        associations=tuple(associations.values()),
        registry=entity_cls.__registry__,
    )
