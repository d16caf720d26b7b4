"""Order status transitions.

Assignment moves an order out of ``pending``; after that the assigned agent
may move it to any of the agent statuses until it is ``delivered``.
"""
from __future__ import annotations

from dataclasses import replace

from .domain import Claims, Order

PENDING = "pending"
ASSIGNED = "assigned"
DELIVERED = "delivered"

AGENT_STATUSES = ("ready", "in_transit", "arrived", "delivered")

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"assigned"}),
    "assigned": frozenset(AGENT_STATUSES),
    "ready": frozenset(AGENT_STATUSES),
    "in_transit": frozenset(AGENT_STATUSES),
    "arrived": frozenset(AGENT_STATUSES),
    "delivered": frozenset(),
}


class InvalidTransition(Exception):
    pass


class AlreadyAssigned(Exception):
    pass


class InvariantViolation(Exception):
    pass


def check_invariant(order: Order) -> Order:
    has_agent = order.delivery_agent is not None and order.agent_name is not None
    no_agent = order.delivery_agent is None and order.agent_name is None
    if order.status == PENDING and not no_agent:
        raise InvariantViolation(f"Pending order {order.id} has an assigned agent")
    if order.status != PENDING and not has_agent:
        raise InvariantViolation(f"Order {order.id} is {order.status} without an agent")
    return order


def assign(order: Order, agent: Claims) -> Order:
    if order.status != PENDING:
        raise AlreadyAssigned("Order already assigned")
    return check_invariant(
        replace(order, status=ASSIGNED, delivery_agent=agent.phone, agent_name=agent.username)
    )


def advance(order: Order, target: str) -> Order:
    if target not in AGENT_STATUSES:
        raise InvalidTransition(f"Invalid status: {target}")
    if target not in TRANSITIONS.get(order.status, frozenset()):
        raise InvalidTransition(f"Cannot move order {order.id} from {order.status} to {target}")
    return check_invariant(replace(order, status=target))
