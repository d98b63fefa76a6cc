from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

from cor_chain.descriptor import Initializer
from cor_chain.errors import InstantiationError
from cor_chain.handler import Handler

logger = logging.getLogger(__name__)

__all__ = [
    "InstantiationStrategy",
    "DefaultConstructStrategy",
    "GlobalInitializerStrategy",
    "PerTypeInitializerStrategy",
    "FactoryTableStrategy",
]

# ==========================
# Module: strategy
# Purpose: Policies turning a type identifier (plus optional initializer
#          reference) into a live Handler. Every failure surfaces as
#          InstantiationError wrapping the underlying cause.
# ==========================


def _type_name(type_id: Any) -> str:
    return getattr(type_id, "__qualname__", None) or repr(type_id)


class InstantiationStrategy(ABC):
    """
    Base policy for creating handlers.

    Subclasses implement `_create`; `instantiate` wraps failures and verifies
    that the created object is a Handler.
    """

    def instantiate(self, type_id: Any, initializer_ref: str = "") -> Handler:
        """
        Creates one handler.

        :param type_id: Identifier of the handler type, normally a class.
        :param initializer_ref: Optional name of a per-type initializer accessor.
        :return: A new Handler instance.
        :raises InstantiationError: If creation fails or yields a non-handler.
        """
        try:
            handler = self._create(type_id, initializer_ref)
        except InstantiationError:
            raise
        except Exception as exc:
            logger.debug("Instantiation of %s failed: %r", _type_name(type_id), exc)
            raise InstantiationError(
                f"Instantiation of chain element {_type_name(type_id)} failed: {exc}",
                type_id=type_id,
                cause=exc,
            ) from exc

        if not isinstance(handler, Handler):
            raise InstantiationError(
                f"Initializer for {_type_name(type_id)} returned {type(handler).__name__}, not a Handler",
                type_id=type_id,
            )
        return handler

    def __call__(self, type_id: Any, initializer_ref: str = "") -> Handler:
        return self.instantiate(type_id, initializer_ref)

    @abstractmethod
    def _create(self, type_id: Any, initializer_ref: str) -> Any:
        """
        Performs the actual construction. May raise any exception.
        """


class DefaultConstructStrategy(InstantiationStrategy):
    """
    Calls the type with no arguments. The initializer reference is ignored.
    """

    def _create(self, type_id: Any, initializer_ref: str) -> Any:
        if not callable(type_id):
            raise InstantiationError(
                f"Type identifier {type_id!r} is not constructible",
                type_id=type_id,
            )
        return type_id()


class GlobalInitializerStrategy(InstantiationStrategy):
    """
    Applies one caller-supplied initializer to every type.

    :param initializer: Callable receiving the type and returning a handler.
    """

    def __init__(self, initializer: Initializer) -> None:
        self._initializer = initializer

    def _create(self, type_id: Any, initializer_ref: str) -> Any:
        return self._initializer(type_id)


class PerTypeInitializerStrategy(InstantiationStrategy):
    """
    Resolves the initializer through an accessor named on the type itself.

    The accessor is looked up by name on the type and called without
    arguments; it must return the initializer, which is then called with the
    type. An empty reference falls back to default construction.

    :param fallback: Strategy used when no reference is given.
    """

    def __init__(self, fallback: Optional[InstantiationStrategy] = None) -> None:
        self._fallback = fallback or DefaultConstructStrategy()

    def _create(self, type_id: Any, initializer_ref: str) -> Any:
        if not initializer_ref:
            return self._fallback.instantiate(type_id)

        accessor = getattr(type_id, initializer_ref, None)
        if accessor is None:
            raise InstantiationError(
                f"Initializer accessor '{initializer_ref}' not found on {_type_name(type_id)}",
                type_id=type_id,
            )
        if not callable(accessor):
            raise InstantiationError(
                f"Initializer accessor '{initializer_ref}' on {_type_name(type_id)} is not callable",
                type_id=type_id,
            )

        initializer = accessor()
        if not callable(initializer):
            raise InstantiationError(
                f"Accessor '{initializer_ref}' on {_type_name(type_id)} did not return an initializer",
                type_id=type_id,
            )
        return initializer(type_id)


class FactoryTableStrategy(InstantiationStrategy):
    """
    Looks the initializer up in an explicit table supplied at build time.

    Types missing from the table are default-constructed. The initializer
    reference is ignored; the table replaces name-based lookup.

    :param table: Mapping of type identifier to initializer.
    :param fallback: Strategy used for types missing from the table.
    """

    def __init__(self, table: Mapping[Any, Initializer],
                 fallback: Optional[InstantiationStrategy] = None) -> None:
        self._table: Dict[Any, Callable[[Any], Any]] = dict(table)
        self._fallback = fallback or DefaultConstructStrategy()

    def _create(self, type_id: Any, initializer_ref: str) -> Any:
        initializer = self._table.get(type_id)
        if initializer is None:
            return self._fallback.instantiate(type_id)
        return initializer(type_id)
