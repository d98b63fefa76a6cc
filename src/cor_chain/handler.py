"""
Chain of Responsibility (Behavioral) - handler contract and traversal engine.

Intent:
    Pass an input along a chain of handlers; the first handler responsible for
    it executes and its result is returned. Inputs nobody is responsible for
    fall off the end of the chain and yield None.

Participants:
    - Handler (abstract): declares the capability set and keeps a next reference.
    - HandlerEngine: supplies the default sequential traversal; concrete
      handlers only implement `is_responsible` and `execute`.

Notes:
    - Traversal is strictly sequential and short-circuits at the first
      responsible handler.
    - "Unhandled" is a regular outcome (None), never an exception.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Iterator, Optional, TypeVar

__all__ = [
    "Handler",
    "HandlerEngine",
    "iter_chain",
]

I = TypeVar("I")
R = TypeVar("R")


class Handler(ABC, Generic[I, R]):
    """Capability interface of a single chain element.

    Most handlers should extend `HandlerEngine` instead of implementing this
    interface directly.
    """

    @abstractmethod
    def is_responsible(self, injected: I) -> bool:
        """Decide whether this handler processes the given input.

        Should be idempotent and free of side effects.

        :param injected: The input submitted to the chain.
        :return: True if `execute` must be called for this input.
        """

    @abstractmethod
    def execute(self, injected: I) -> Optional[R]:
        """Process an input this handler declared itself responsible for.

        :param injected: The input submitted to the chain.
        :return: Optional result of the processing.
        """

    @abstractmethod
    def process(self, injected: I) -> Optional[R]:
        """Run this element of the chain for the given input.

        :param injected: The input submitted to the chain.
        :return: Result of the responsible handler, or None if unhandled.
        """

    @abstractmethod
    def set_next(self, handler: Optional["Handler[I, R]"]) -> Optional["Handler[I, R]"]:
        """Assign the successor of this handler.

        :param handler: The next handler, or None to terminate the chain here.
        :return: The same handler to allow fluent chain building.
        """

    @property
    @abstractmethod
    def next_handler(self) -> Optional["Handler[I, R]"]:
        """:return: The successor, or None for the terminal handler."""


class HandlerEngine(Handler[I, R]):
    """Reusable sequential-delegation behaviour.

    Check responsibility, execute if responsible, otherwise delegate to the
    next handler, otherwise report "unhandled" (None).

    Links are meant to be set once by the builder. Calling `set_next` on a
    built chain is allowed but changes a topology callers assume to be fixed.
    """

    def __init__(self) -> None:
        self._next: Optional[Handler[I, R]] = None

    @property
    def next_handler(self) -> Optional[Handler[I, R]]:
        return self._next

    def set_next(self, handler: Optional[Handler[I, R]]) -> Optional[Handler[I, R]]:
        self._next = handler
        return handler

    def process(self, injected: I) -> Optional[R]:
        # Walks successors in a loop so chain length is not bounded by the
        # recursion limit. Handlers with their own `process` get the call.
        current: Handler[I, R] = self
        while True:
            if current.is_responsible(injected):
                return current.execute(injected)
            successor = current.next_handler
            if successor is None:
                return None
            if not _uses_engine_traversal(successor):
                return successor.process(injected)
            current = successor

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _uses_engine_traversal(handler: Handler) -> bool:
    return isinstance(handler, HandlerEngine) and type(handler).process is HandlerEngine.process


def iter_chain(head: Optional[Handler]) -> Iterator[Handler]:
    """Yield the handlers of a chain from head to tail.

    Stops if a handler is met twice, so a chain re-linked by hand into a loop
    cannot make the walk run forever.

    :param head: First handler of the chain (None yields nothing).
    """
    seen = set()
    current = head
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.next_handler
