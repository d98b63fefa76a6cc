from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "ChainError",
    "DiscoveryError",
    "InstantiationError",
    "BuildError",
    "ChainCycleError",
    "EmptyChainError",
]


# ==========================
# Module: errors
# Purpose: Failure taxonomy for discovering, instantiating and building chains.
# An unhandled input is not an error: traversal returns None instead.
# ==========================


class ChainError(RuntimeError):
    """
    Base class for every error raised while assembling a chain.

    :param message: Human-readable description of the failure.
    :param cause: Original exception, if any.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class DiscoveryError(ChainError):
    """
    Raised when a namespace cannot be read or does not exist.

    :param message: Human-readable description of the failure.
    :param namespace: The namespace that was being enumerated.
    :param cause: Original exception, if any.
    """

    def __init__(self, message: str, namespace: str = "", cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause=cause)
        self.namespace = namespace


class InstantiationError(ChainError):
    """
    Raised when a handler cannot be created from its type identifier.

    :param message: Human-readable description of the failure.
    :param type_id: Identifier of the handler type that failed.
    :param cause: Original exception, if any.
    """

    def __init__(self, message: str, type_id: Any = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause=cause)
        self.type_id = type_id


class BuildError(ChainError):
    """
    Umbrella error of the namespace-driven entry points; wraps discovery and
    instantiation failures in ``cause``.
    """


class ChainCycleError(BuildError):
    """
    Raised when the same handler instance would be linked twice.
    """


class EmptyChainError(BuildError):
    """
    Raised for an empty source when the build policy forbids empty chains.
    """
