from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

__all__ = [
    "Descriptor",
    "ElementMarker",
    "Initializer",
    "chain_element",
    "element_marker",
]

# ==========================
# Module: descriptor
# Purpose: Records describing which handler to build, with which priority and
#          which initializer. Descriptors are transient: the builder consumes
#          them once and keeps nothing.
# ==========================

# An initializer receives the handler type and returns a live handler.
Initializer = Callable[[Any], Any]

T = TypeVar("T", bound=type)

MARKER_ATTR = "__chain_element__"


@dataclass(frozen=True, slots=True)
class Descriptor:
    """
    Describes one handler to be built.

    :param type_id: Identifier of the handler type, normally the handler class.
    :param priority: Position key; lower values come earlier in the chain.
    :param initializer_ref: Name of an accessor on the type that returns the
                            initializer to use. Empty means default construction.
    """
    type_id: Any
    priority: int = 0
    initializer_ref: str = ""


@dataclass(frozen=True, slots=True)
class ElementMarker:
    """
    Build metadata attached to a handler class by `chain_element`.

    :param priority: Position key; lower values come earlier in the chain.
    :param initializer_ref: Name of the initializer accessor on the class.
    """
    priority: int = 0
    initializer_ref: str = ""

    def describe(self, type_id: Any) -> Descriptor:
        """
        Turns the marker into a descriptor for the given type.

        :param type_id: The marked handler class.
        :return: Descriptor carrying this marker's priority and initializer.
        """
        return Descriptor(type_id=type_id, priority=self.priority, initializer_ref=self.initializer_ref)


def chain_element(priority: int = 0, initializer_ref: str = "") -> Callable[[T], T]:
    """
    Class decorator marking a handler type as an element of the chain of its
    module. Module-scan discovery picks marked classes up.

    Usage:
        @chain_element(priority=10)
        class AuthHandler(HandlerEngine): ...

    :param priority: Position key; lower values come earlier in the chain.
    :param initializer_ref: Name of a static accessor on the class returning
                            the initializer used to build it.
    :return: Decorator returning the class unchanged apart from the marker.
    """

    def mark(cls: T) -> T:
        setattr(cls, MARKER_ATTR, ElementMarker(priority=priority, initializer_ref=initializer_ref))
        return cls

    return mark


def element_marker(cls: Any) -> Optional[ElementMarker]:
    """
    :param cls: Any object, normally a class.
    :return: The marker set by `chain_element` (inherited markers included), or None.
    """
    marker = getattr(cls, MARKER_ATTR, None)
    return marker if isinstance(marker, ElementMarker) else None
