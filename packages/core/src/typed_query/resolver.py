"""
Association resolver: batched preloading.

One query per preloaded association, whatever the number of parents::

    SELECT tasks.id, tasks.title, tasks.user_id FROM tasks
    WHERE tasks.user_id IN ($1, $2, $3) [AND <nested predicates>]

Children are attached to their parents by key.  A has-many association gets a
list (empty when nothing matched); has-one and belongs-to get the first match
in result order, or ``None``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .exceptions import TypeMismatchError
from .plan import QueryPlan

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .dispatcher import QueryDispatcher
    from .entity import Entity
    from .plan import PreloadSpec
    from .ports import IConnection
    from .registry import EntityDescriptor, ResolvedAssociation

logger = logging.getLogger(__name__)


class AssociationResolver:
    """Resolves :class:`PreloadSpec` s for a batch of parent entities."""

    def __init__(self, dispatcher: QueryDispatcher) -> None:
        self._dispatcher = dispatcher

    async def resolve(
        self,
        owner: EntityDescriptor,
        parents: Sequence[Entity],
        preload: PreloadSpec,
        conn: IConnection,
    ) -> None:
        association = owner.resolve_association(preload.association)
        keys = _unique_keys(parents, association.parent_key.name)

        children: list[Any] = []
        if keys:
            plan = self._plan_for(association, preload, keys)
            children = await self._dispatcher.load(plan, conn, operation="query.preload")
        else:
            logger.debug(
                "Skipping preload %s.%s: no keys to look up",
                owner.name,
                association.name,
            )
        _attach(association, parents, children)

    def _plan_for(
        self,
        association: ResolvedAssociation,
        preload: PreloadSpec,
        keys: list[Any],
    ) -> QueryPlan:
        plan = preload.plan or QueryPlan(association.target)
        if plan.entity.entity_cls is not association.target.entity_cls:
            raise TypeMismatchError(
                f"{association.owner.name}.{association.name}",
                association.target.name,
                plan.entity.entity_cls,
                "preload query targets a different entity",
            )
        keys_predicate = association.child_ref.in_(keys)
        return replace(plan, predicates=(keys_predicate, *plan.predicates))


def _unique_keys(parents: Sequence[Entity], column: str) -> list[Any]:
    seen: dict[Any, None] = {}
    for parent in parents:
        key = getattr(parent, column)
        if key is not None:
            seen.setdefault(key, None)
    return list(seen)


def _attach(
    association: ResolvedAssociation,
    parents: Sequence[Entity],
    children: list[Any],
) -> None:
    by_key: defaultdict[Any, list[Any]] = defaultdict(list)
    for child in children:
        by_key[getattr(child, association.child_key.name)].append(child)

    for parent in parents:
        matches = by_key.get(getattr(parent, association.parent_key.name), [])
        if association.kind.is_collection:
            parent._attach(association.name, list(matches))
        else:
            parent._attach(association.name, matches[0] if matches else None)
