"""
Request chain - a ready-made chain of responsibility over `Request` objects.

Handlers (in chain order):
    - AuthenticationHandler (10): rejects requests that need a user but carry none.
    - RateLimitHandler (20): rejects users above the request limit.
    - OrderRuleHandler (30): validates "create_order" requests.

Each handler is declared with `chain_element`; `build_default_chain` discovers
them by scanning this module. RateLimitHandler needs a constructor argument and
is therefore built through its `default_initializer` accessor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Tuple

from cor_chain.builder import ChainBuilder
from cor_chain.descriptor import chain_element
from cor_chain.errors import EmptyChainError
from cor_chain.handler import Handler, HandlerEngine


@dataclass(frozen=True, slots=True)
class Request:
    """Input submitted to the request chain.

    :ivar action: Operation requested by the caller, e.g. "create_order".
    :ivar user_id: Caller identity; None for anonymous calls.
    :ivar requires_auth: Whether the action is restricted to known users.
    :ivar request_count: Requests the caller made in the current window.
    :ivar items: Line items of an order.
    """
    action: str
    user_id: Optional[str] = None
    requires_auth: bool = False
    request_count: int = 0
    items: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Verdict:
    """Decision returned by the handler that took the request.

    :ivar accepted: True if the request may proceed.
    :ivar reason: Why the handler decided as it did.
    :ivar details: Extra values computed while deciding.
    """
    accepted: bool
    reason: str
    details: Mapping[str, Any] = field(default_factory=dict)


@chain_element(priority=10)
class AuthenticationHandler(HandlerEngine[Request, Verdict]):
    """Takes restricted requests that arrive without a user."""

    def is_responsible(self, request: Request) -> bool:
        return request.requires_auth and not request.user_id

    def execute(self, request: Request) -> Optional[Verdict]:
        return Verdict(accepted=False, reason=f"'{request.action}' requires a signed-in user")


@chain_element(priority=20, initializer_ref="default_initializer")
class RateLimitHandler(HandlerEngine[Request, Verdict]):
    """Takes requests from callers above the request limit.

    :param limit: Maximum number of requests allowed per window.
    """

    DEFAULT_LIMIT = 100

    def __init__(self, limit: int) -> None:
        super().__init__()
        self.limit = limit

    @staticmethod
    def default_initializer() -> Callable[[type], "RateLimitHandler"]:
        """:return: Initializer building the handler with DEFAULT_LIMIT."""
        return lambda cls: cls(limit=cls.DEFAULT_LIMIT)

    def is_responsible(self, request: Request) -> bool:
        return request.request_count > self.limit

    def execute(self, request: Request) -> Optional[Verdict]:
        return Verdict(accepted=False, reason=f"more than {self.limit} requests in this window",
                       details={"request_count": request.request_count})


@chain_element(priority=30)
class OrderRuleHandler(HandlerEngine[Request, Verdict]):
    """Decides on "create_order" requests: an order needs at least one item."""

    def is_responsible(self, request: Request) -> bool:
        return request.action == "create_order"

    def execute(self, request: Request) -> Optional[Verdict]:
        if not request.items:
            return Verdict(accepted=False, reason="order has no items")
        return Verdict(accepted=True, reason="order accepted", details={"item_count": len(request.items)})


def build_default_chain(builder: Optional[ChainBuilder] = None) -> Handler[Request, Verdict]:
    """Build the canonical chain (Authentication → RateLimit → OrderRule).

    :param builder: Builder to use; a default one if omitted.
    :return: The head of the handler chain.
    :raises EmptyChainError: If no handler of this module was discovered.
    """
    head = (builder or ChainBuilder()).build_from_namespace(__name__)
    if head is None:
        raise EmptyChainError(f"No chain elements declared in {__name__}.")
    return head


__all__ = [
    "Request",
    "Verdict",
    "AuthenticationHandler",
    "RateLimitHandler",
    "OrderRuleHandler",
    "build_default_chain",
]
