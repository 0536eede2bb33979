"""
Entity registry: static column and association metadata per entity.

Descriptors are built once, when an :class:`~typed_query.entity.Entity`
subclass is created, and are read-only afterwards.  Association targets
may be declared by class name and are resolved lazily so entities can
reference classes defined later in the same module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import (
    RegistryError,
    TypeMismatchError,
    UnknownAssociationError,
    UnknownColumnError,
)

if TYPE_CHECKING:
    from .predicates import ColumnRef

logger = logging.getLogger(__name__)

SUPPORTED_COLUMN_TYPES: tuple[type[Any], ...] = (
    str,
    int,
    float,
    bool,
    Decimal,
    datetime,
    date,
    UUID,
)

_NUMERIC_TYPES: tuple[type[Any], ...] = (int, float, Decimal)


@dataclass(frozen=True)
class ColumnDescriptor:
    """A single mapped column: name, Python type, nullability, position."""

    name: str
    python_type: type[Any]
    nullable: bool = False
    position: int = 0
    _adapter: TypeAdapter[Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.python_type not in SUPPORTED_COLUMN_TYPES:
            raise RegistryError(
                f"Column '{self.name}' has unsupported type "
                f"{self.python_type!r}; supported: "
                f"{', '.join(t.__name__ for t in SUPPORTED_COLUMN_TYPES)}"
            )
        object.__setattr__(self, "_adapter", TypeAdapter(self.python_type))

    @property
    def type_name(self) -> str:
        name = self.python_type.__name__
        return f"{name} | None" if self.nullable else name

    @property
    def is_numeric(self) -> bool:
        return self.python_type is not bool and issubclass(
            self.python_type, _NUMERIC_TYPES
        )

    @property
    def is_text(self) -> bool:
        return self.python_type is str

    def validate(self, value: Any, *, label: str | None = None) -> Any:
        """
        Check *value* against the declared type (pydantic strict mode).

        ``None`` is accepted only for nullable columns.

        Raises:
            TypeMismatchError: If the value does not match.
        """
        label = label or self.name
        if value is None:
            if self.nullable:
                return None
            raise TypeMismatchError(label, self.type_name, value, "column is not nullable")
        try:
            return self._adapter.validate_python(value, strict=True)
        except PydanticValidationError as exc:
            reason = exc.errors()[0].get("msg", "") if exc.errors() else ""
            raise TypeMismatchError(label, self.type_name, value, reason) from exc

    def coerce(self, value: Any) -> Any:
        """Convert a value read from the backend to the declared type (lax mode)."""
        if value is None:
            return None
        return self._adapter.validate_python(value)


class AssociationKind(str, Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"

    @property
    def is_collection(self) -> bool:
        return self is AssociationKind.HAS_MANY


@dataclass(frozen=True)
class AssociationDescriptor:
    """
    Declared relationship between two entities.

    ``foreign_key`` names a column on the *target* for ``has_one`` /
    ``has_many`` and a column on the *owner* for ``belongs_to``.
    """

    name: str
    kind: AssociationKind
    target: str | type[Any]
    foreign_key: str

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__name__


@dataclass(frozen=True)
class ResolvedAssociation:
    """An association with both ends resolved to descriptors and key columns.

    Rows are related when ``owner.parent_key == target.child_key``.
    """

    descriptor: AssociationDescriptor
    owner: EntityDescriptor
    target: EntityDescriptor
    parent_key: ColumnDescriptor
    child_key: ColumnDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def kind(self) -> AssociationKind:
        return self.descriptor.kind

    @property
    def parent_ref(self) -> ColumnRef:
        return self.owner.ref(self.parent_key.name)

    @property
    def child_ref(self) -> ColumnRef:
        return self.target.ref(self.child_key.name)


@dataclass(frozen=True, eq=False)
class EntityDescriptor:
    """Table name, ordered columns, primary key, and associations of an entity."""

    entity_cls: type[Any]
    table: str
    columns: tuple[ColumnDescriptor, ...]
    primary_key: str
    associations: tuple[AssociationDescriptor, ...] = ()
    registry: EntityRegistry | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise RegistryError(f"Duplicate column names on '{self.name}': {names}")
        if self.primary_key not in names:
            raise UnknownColumnError(self.primary_key, self.name, names)
        for assoc in self.associations:
            if assoc.name in names:
                raise RegistryError(
                    f"Association '{assoc.name}' on '{self.name}' "
                    f"clashes with a column of the same name"
                )

    @property
    def name(self) -> str:
        return self.entity_cls.__name__

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def column(self, name: str) -> ColumnDescriptor:
        for col in self.columns:
            if col.name == name:
                return col
        raise UnknownColumnError(name, self.name, list(self.column_names))

    def ref(self, name: str) -> ColumnRef:
        from .predicates import ColumnRef

        return ColumnRef(self.table, self.column(name))

    @property
    def pk(self) -> ColumnRef:
        return self.ref(self.primary_key)

    def association(self, name: str) -> AssociationDescriptor:
        for assoc in self.associations:
            if assoc.name == name:
                return assoc
        raise UnknownAssociationError(
            name, self.name, [a.name for a in self.associations]
        )

    def resolve_association(self, name: str) -> ResolvedAssociation:
        """Resolve *name* against the registry and check its key columns."""
        assoc = self.association(name)
        registry = self.registry or default_registry
        target = registry.resolve(assoc.target)

        if assoc.kind is AssociationKind.BELONGS_TO:
            parent_key = self.column(assoc.foreign_key)
            child_key = target.column(target.primary_key)
        else:
            parent_key = self.column(self.primary_key)
            child_key = target.column(assoc.foreign_key)

        if parent_key.python_type is not child_key.python_type:
            raise RegistryError(
                f"Association '{self.name}.{name}' joins "
                f"{self.table}.{parent_key.name} ({parent_key.type_name}) to "
                f"{target.table}.{child_key.name} ({child_key.type_name})"
            )
        return ResolvedAssociation(assoc, self, target, parent_key, child_key)


class EntityRegistry:
    """
    Store of entity descriptors keyed by class and by class name.

    Also remembers the default query class per entity so association
    blocks and preloads can build nested queries that carry the target's
    named scopes.
    """

    def __init__(self) -> None:
        self._by_class: dict[type[Any], EntityDescriptor] = {}
        self._by_name: dict[str, EntityDescriptor] = {}
        self._query_classes: dict[type[Any], type[Any]] = {}

    def register(self, descriptor: EntityDescriptor) -> None:
        existing = self._by_name.get(descriptor.name)
        if existing is not None and existing.entity_cls is not descriptor.entity_cls:
            logger.warning(
                "Entity name '%s' re-registered; replacing %r with %r",
                descriptor.name,
                existing.entity_cls,
                descriptor.entity_cls,
            )
            self._by_class.pop(existing.entity_cls, None)
            self._query_classes.pop(existing.entity_cls, None)
        self._by_class[descriptor.entity_cls] = descriptor
        self._by_name[descriptor.name] = descriptor
        logger.debug(
            "Registered entity %s -> table %s (%d columns, %d associations)",
            descriptor.name,
            descriptor.table,
            len(descriptor.columns),
            len(descriptor.associations),
        )

    def describe(self, entity_cls: type[Any]) -> EntityDescriptor:
        try:
            return self._by_class[entity_cls]
        except KeyError:
            raise RegistryError(
                f"{entity_cls!r} is not a registered entity "
                f"(missing __tablename__?)"
            ) from None

    def resolve(self, target: str | type[Any]) -> EntityDescriptor:
        if isinstance(target, str):
            try:
                return self._by_name[target]
            except KeyError:
                raise RegistryError(
                    f"Unknown entity '{target}'. "
                    f"Registered: {', '.join(sorted(self._by_name)) or '<none>'}"
                ) from None
        return self.describe(target)

    def entities(self) -> list[EntityDescriptor]:
        return list(self._by_class.values())

    # -- query classes ------------------------------------------------------

    def query_class(self, entity_cls: type[Any]) -> type[Any] | None:
        return self._query_classes.get(entity_cls)

    def set_query_class(self, entity_cls: type[Any], query_cls: type[Any]) -> None:
        """
        Remember *query_cls* as the default for *entity_cls*.

        The first declared query class wins; a generated default gives way to
        a declared one.
        """
        existing = self._query_classes.get(entity_cls)
        if existing is None or getattr(existing, "__generated__", False):
            self._query_classes[entity_cls] = query_cls

    def clear(self) -> None:
        self._by_class.clear()
        self._by_name.clear()
        self._query_classes.clear()


default_registry = EntityRegistry()
