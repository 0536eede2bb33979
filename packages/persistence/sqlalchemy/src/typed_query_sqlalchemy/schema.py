"""
SQLAlchemy ``Table`` metadata built from the entity registry.

Used to create schemas for tests and bootstrapping::

    metadata = build_metadata()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

Foreign keys are derived from the declared associations.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Uuid,
)

from typed_query.registry import AssociationKind, default_registry

from .exceptions import SchemaError

if TYPE_CHECKING:
    from sqlalchemy.types import TypeEngine

    from typed_query.registry import EntityDescriptor, EntityRegistry

_COLUMN_TYPES: dict[type[Any], type[TypeEngine[Any]]] = {
    str: String,
    int: Integer,
    float: Float,
    bool: Boolean,
    Decimal: Numeric,
    datetime: DateTime,
    date: Date,
    UUID: Uuid,
}


def _foreign_keys(entities: list[EntityDescriptor]) -> dict[tuple[str, str], str]:
    """``(table, column) -> "referenced_table.column"`` for every association."""
    references: dict[tuple[str, str], str] = {}
    for entity in entities:
        for association in entity.associations:
            resolved = entity.resolve_association(association.name)
            if resolved.kind is AssociationKind.BELONGS_TO:
                source = (entity.table, resolved.parent_key.name)
                target = resolved.child_ref.qualified
            else:
                source = (resolved.target.table, resolved.child_key.name)
                target = resolved.parent_ref.qualified
            if references.setdefault(source, target) != target:
                raise SchemaError(
                    f"{source[0]}.{source[1]} references both "
                    f"{references[source]} and {target}"
                )
    return references


def build_table(
    entity: EntityDescriptor,
    metadata: MetaData,
    foreign_keys: dict[tuple[str, str], str] | None = None,
) -> Table:
    foreign_keys = foreign_keys or {}
    columns = []
    for column in entity.columns:
        args: list[Any] = [_COLUMN_TYPES[column.python_type]()]
        reference = foreign_keys.get((entity.table, column.name))
        if reference is not None:
            args.append(ForeignKey(reference))
        columns.append(
            Column(
                column.name,
                *args,
                primary_key=column.name == entity.primary_key,
                nullable=column.nullable,
            )
        )
    return Table(entity.table, metadata, *columns)


def build_metadata(
    registry: EntityRegistry | None = None,
    metadata: MetaData | None = None,
) -> MetaData:
    """One ``Table`` per registered entity, in a (new) ``MetaData``."""
    registry = registry if registry is not None else default_registry
    metadata = metadata if metadata is not None else MetaData()
    entities = registry.entities()
    foreign_keys = _foreign_keys(entities)
    for entity in entities:
        if entity.table in metadata.tables:
            raise SchemaError(f"Table '{entity.table}' is mapped by more than one entity")
        build_table(entity, metadata, foreign_keys)
    return metadata
