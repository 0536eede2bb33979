"""
Unloaded-association policies.

The dispatcher is constructed with one of these strategies; it decides what
``await entity.<association>`` does when the association was not preloaded:

* :class:`RaiseOnUnloaded` (development, test): fail with
  :class:`AssociationNotLoadedError` so N+1 patterns surface early.
* :class:`LazyLoadOnUnloaded` (production): fetch once, log a warning,
  and return the data so users never see the failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .config import ExecutionMode
from .exceptions import AssociationNotLoadedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .entity import Entity

logger = logging.getLogger(__name__)


class UnloadedAssociationPolicy(ABC):
    """Strategy for reading an association that was not preloaded."""

    @abstractmethod
    async def on_unloaded(
        self,
        entity: Entity,
        association: str,
        load: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Handle the access.

        Args:
            entity: The entity whose association was read.
            association: Association name.
            load: Performs a one-off fetch and caches the result on *entity*.
        """
        ...


class RaiseOnUnloaded(UnloadedAssociationPolicy):
    async def on_unloaded(
        self,
        entity: Entity,
        association: str,
        load: Callable[[], Awaitable[Any]],
    ) -> Any:
        raise AssociationNotLoadedError(type(entity).__name__, association)


class LazyLoadOnUnloaded(UnloadedAssociationPolicy):
    async def on_unloaded(
        self,
        entity: Entity,
        association: str,
        load: Callable[[], Awaitable[Any]],
    ) -> Any:
        logger.warning(
            "Lazy-loading %s.%s (id=%r); preload it to avoid N+1 queries",
            type(entity).__name__,
            association,
            entity.primary_key_value,
        )
        return await load()


def policy_for_mode(mode: ExecutionMode) -> UnloadedAssociationPolicy:
    """Production lazy-loads; every other mode raises."""
    if mode.is_production_like:
        return LazyLoadOnUnloaded()
    return RaiseOnUnloaded()
