from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from cor_chain.descriptor import Descriptor, Initializer
from cor_chain.discovery import Discovery, ModuleScanDiscovery, scan_handler_types
from cor_chain.errors import (
    BuildError,
    ChainCycleError,
    ChainError,
    EmptyChainError,
)
from cor_chain.handler import Handler
from cor_chain.strategy import (
    DefaultConstructStrategy,
    FactoryTableStrategy,
    InstantiationStrategy,
    PerTypeInitializerStrategy,
)

logger = logging.getLogger(__name__)

__all__ = [
    "BuildPolicy",
    "ChainBuilder",
    "order_descriptors",
    "build_from_ordered_list",
    "build_from_descriptors",
    "build_from_descriptor_map",
    "build_from_namespace",
    "build_from_handler_types",
]

# ==========================
# Module: builder
# Purpose: Order, instantiate and link handlers into a chain, all-or-nothing.
#          Handlers are created into a temporary buffer; links are written and
#          the head is published only once every instantiation succeeded.
# ==========================


@dataclass
class BuildPolicy:
    """
    Build configuration.

    :param allow_empty: If True an empty source yields no chain (None);
                        if False it raises EmptyChainError.
    """
    allow_empty: bool = True


def order_descriptors(descriptors: Iterable[Descriptor]) -> List[Descriptor]:
    """
    Orders descriptors by ascending priority.

    The ordering is stable: descriptors with equal priority keep the order in
    which they were discovered.

    :param descriptors: Descriptors in discovery order.
    :return: New list, lowest priority first.
    :raises BuildError: If a descriptor carries a non-integer priority.
    """
    descriptors = list(descriptors)
    for descriptor in descriptors:
        if isinstance(descriptor.priority, bool) or not isinstance(descriptor.priority, int):
            raise BuildError(
                f"Priority of {descriptor.type_id!r} must be an integer, got {descriptor.priority!r}"
            )
    return sorted(descriptors, key=lambda d: d.priority)


class ChainBuilder:
    """
    Builds chains of responsibility from type lists, descriptors or namespaces.

    :param strategy: Strategy overriding the per-mode defaults (default
                     construction for ordered lists, per-type initializers
                     for descriptors).
    :param policy: Build configuration.
    :param discovery: Descriptor source for namespace builds
                      (defaults to ModuleScanDiscovery).
    """

    def __init__(self, strategy: Optional[InstantiationStrategy] = None,
                 policy: Optional[BuildPolicy] = None,
                 discovery: Optional[Discovery] = None) -> None:
        self._strategy = strategy
        self._policy = policy or BuildPolicy()
        self._discovery = discovery or ModuleScanDiscovery()

    @property
    def policy(self) -> BuildPolicy:
        """
        :return: The build configuration in use.
        """
        return self._policy

    # ---------- Explicit-order mode ----------

    def build_from_ordered_list(self, type_list: Sequence[Any],
                                strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
        """
        Links handlers in exactly the given order; priorities are never consulted.

        :param type_list: Handler type identifiers, head first.
        :param strategy: Instantiation strategy (default construction if omitted).
        :return: Head of the chain, or None for an empty list.
        :raises InstantiationError: If any element cannot be created.
        """
        strategy = strategy or self._strategy or DefaultConstructStrategy()
        return self._assemble([(type_id, "") for type_id in type_list], strategy)

    def build_from_descriptor_map(self, bindings: Mapping[Any, Initializer]) -> Optional[Handler]:
        """
        Builds a chain where each type brings its own initializer.

        Order follows the iteration order of the mapping.

        :param bindings: Mapping of type identifier to initializer.
        :return: Head of the chain, or None for an empty mapping.
        :raises InstantiationError: If any initializer fails.
        """
        strategy = FactoryTableStrategy(bindings)
        return self._assemble([(type_id, "") for type_id in bindings], strategy)

    # ---------- Priority mode ----------

    def build_from_descriptors(self, descriptors: Iterable[Descriptor],
                               strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
        """
        Orders descriptors by ascending priority and links them.

        :param descriptors: Descriptors in discovery order.
        :param strategy: Instantiation strategy (per-type initializers if omitted).
        :return: Head of the chain, or None for an empty collection.
        :raises InstantiationError: If any element cannot be created.
        """
        strategy = strategy or self._strategy or PerTypeInitializerStrategy()
        ordered = order_descriptors(descriptors)
        return self._assemble([(d.type_id, d.initializer_ref) for d in ordered], strategy)

    # ---------- Namespace entry points ----------

    def build_from_namespace(self, namespace: str, discovery: Optional[Discovery] = None,
                             strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
        """
        Discovers the descriptors of a namespace and builds them in priority mode.

        :param namespace: Name handed to the discovery source.
        :param discovery: Descriptor source overriding the builder's.
        :param strategy: Instantiation strategy (per-type initializers if omitted).
        :return: Head of the chain, or None if the namespace declares nothing.
        :raises BuildError: Wrapping any discovery or instantiation failure.
        """
        source = discovery or self._discovery
        try:
            descriptors = source.discover(namespace)
            return self.build_from_descriptors(descriptors, strategy)
        except BuildError:
            raise
        except ChainError as exc:
            raise BuildError(f"Build of the chain for '{namespace}' failed: {exc}", cause=exc) from exc

    def build_from_handler_types(self, namespace: str, base: type = Handler,
                                 strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
        """
        Scans a namespace for concrete handler types and links them in the
        order they are found.

        :param namespace: Module or package to scan.
        :param base: Interface the handler types must implement.
        :param strategy: Instantiation strategy (default construction if omitted).
        :return: Head of the chain, or None if no handler type is found.
        :raises BuildError: Wrapping any discovery or instantiation failure.
        """
        try:
            types = scan_handler_types(namespace, base)
            return self.build_from_ordered_list(types, strategy)
        except BuildError:
            raise
        except ChainError as exc:
            raise BuildError(f"Build of the chain for '{namespace}' failed: {exc}", cause=exc) from exc

    # ---------- Assembly ----------

    def _assemble(self, elements: Sequence[Tuple[Any, str]],
                  strategy: InstantiationStrategy) -> Optional[Handler]:
        if not elements:
            if not self._policy.allow_empty:
                raise EmptyChainError("Cannot build a chain from an empty source.")
            logger.warning("No chain elements given; no chain built.")
            return None

        handlers: List[Handler] = []
        seen = set()
        for type_id, initializer_ref in elements:
            handler = strategy.instantiate(type_id, initializer_ref)
            if id(handler) in seen:
                raise ChainCycleError(
                    f"Handler instance {handler!r} was produced twice; linking it would form a cycle."
                )
            seen.add(id(handler))
            handlers.append(handler)
            logger.debug("Instantiated chain element %d: %s", len(handlers), type(handler).__name__)

        for current, successor in zip(handlers, handlers[1:]):
            current.set_next(successor)
        handlers[-1].set_next(None)

        logger.info("Built chain of %d handler(s): %s", len(handlers),
                    " -> ".join(type(h).__name__ for h in handlers))
        return handlers[0]


_default_builder = ChainBuilder()


def build_from_ordered_list(type_list: Sequence[Any],
                            strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
    """Builds with the default builder; see `ChainBuilder.build_from_ordered_list`."""
    return _default_builder.build_from_ordered_list(type_list, strategy)


def build_from_descriptors(descriptors: Iterable[Descriptor],
                           strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
    """Builds with the default builder; see `ChainBuilder.build_from_descriptors`."""
    return _default_builder.build_from_descriptors(descriptors, strategy)


def build_from_descriptor_map(bindings: Mapping[Any, Initializer]) -> Optional[Handler]:
    """Builds with the default builder; see `ChainBuilder.build_from_descriptor_map`."""
    return _default_builder.build_from_descriptor_map(bindings)


def build_from_namespace(namespace: str, discovery: Optional[Discovery] = None,
                         strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
    """Builds with the default builder; see `ChainBuilder.build_from_namespace`."""
    return _default_builder.build_from_namespace(namespace, discovery, strategy)


def build_from_handler_types(namespace: str, base: type = Handler,
                             strategy: Optional[InstantiationStrategy] = None) -> Optional[Handler]:
    """Builds with the default builder; see `ChainBuilder.build_from_handler_types`."""
    return _default_builder.build_from_handler_types(namespace, base, strategy)
