from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from .. import lifecycle
from ..auth import require_owner, require_role
from ..domain import Claims, Order, OrderItem, utcnow_iso
from ..notifier import DependencyFailure, NotificationDispatcher, new_order_notification
from ..store import ORDERS, RecordStore, StoreError

if TYPE_CHECKING:
    from .identity_service import IdentityService

logger = structlog.get_logger(__name__)


class ValidationError(Exception):
    pass


class NotFound(Exception):
    pass


class OrderNotificationFailed(DependencyFailure):
    """The order was recorded but the new-order notification could not be sent."""

    def __init__(self, order: Order) -> None:
        super().__init__("Failed to send email")
        self.order = order


@dataclass
class SubmitOrderInput:
    name: str
    phone: str
    address: str
    cart: list[dict]
    total_price: Any
    delivery_price: Any


def _amount(value: Any, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{label} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"{label} must be a finite number")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return value


def _text(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value.strip() if isinstance(value, str) else ""


class OrderService:
    def __init__(
        self,
        *,
        store: RecordStore,
        notifier: NotificationDispatcher | None = None,
        identities: IdentityService | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.identities = identities

    def submit_order(self, data: SubmitOrderInput) -> Order:
        name, phone, address = _text(data.name), _text(data.phone), _text(data.address)
        if not name or not phone or not address or not data.cart or data.total_price is None or data.delivery_price is None:
            raise ValidationError("Missing order details")
        if not isinstance(data.cart, list):
            raise ValidationError("Cart must be a list of items")

        items = []
        for entry in data.cart:
            if not isinstance(entry, dict) or not _text(entry.get("name")):
                raise ValidationError("Each cart item needs a name and a price")
            items.append(OrderItem(name=_text(entry["name"]), price=_amount(entry.get("price"), "Item price")))

        total = _amount(data.total_price, "totalPrice")
        delivery_price = _amount(data.delivery_price, "deliveryPrice")

        with self.store.locked(ORDERS):
            orders = self.store.load_orders()
            order = Order(
                id=self._new_id({o.id for o in orders}),
                client=name,
                client_phone=phone,
                address=address,
                items=tuple(items),
                total=total,
                delivery_price=delivery_price,
                status=lifecycle.PENDING,
                delivery_agent=None,
                agent_name=None,
                created_at=utcnow_iso(),
            )
            lifecycle.check_invariant(order)
            orders.append(order)
            self.store.save_orders(orders)
        logger.info("order.submitted", order_id=order.id, phone=phone, total=total)

        if self.identities is not None:
            try:
                self.identities.register_customer(phone=phone, username=name)
            except StoreError as e:
                logger.error("identity.register_failed", order_id=order.id, phone=phone, error=str(e))

        if self.notifier is not None:
            try:
                self.notifier.submit(new_order_notification(order))
            except DependencyFailure as e:
                raise OrderNotificationFailed(order) from e
        return order

    def orders_for_customer(self, phone: str) -> list[Order]:
        return [o for o in self.store.load_orders() if o.client_phone == phone]

    def orders_for_agent(self, claims: Claims) -> list[Order]:
        require_role(claims, "agent")
        return [
            o
            for o in self.store.load_orders()
            if o.status == lifecycle.PENDING or o.delivery_agent == claims.phone
        ]

    def assign(self, order_id: str, claims: Claims) -> Order:
        """Claim a pending order. Only one of several racing agents can win."""
        require_role(claims, "agent")
        with self.store.locked(ORDERS):
            orders = self.store.load_orders()
            index = self._index_of(orders, order_id)
            updated = lifecycle.assign(orders[index], claims)
            orders[index] = updated
            self.store.save_orders(orders)
        logger.info("order.assigned", order_id=order_id, agent=claims.phone)
        return updated

    def update_status(self, order_id: str, status: Any, claims: Claims) -> Order:
        require_role(claims, "agent")
        if status not in lifecycle.AGENT_STATUSES:
            raise lifecycle.InvalidTransition("Invalid status")

        with self.store.locked(ORDERS):
            orders = self.store.load_orders()
            index = self._index_of(orders, order_id)
            current = require_owner(claims, orders[index])
            updated = lifecycle.advance(current, status)
            orders[index] = updated
            self.store.save_orders(orders)
        logger.info("order.status_changed", order_id=order_id, status=status, previous=current.status)
        return updated

    @staticmethod
    def _index_of(orders: list[Order], order_id: str) -> int:
        for i, order in enumerate(orders):
            if order.id == order_id:
                return i
        raise NotFound("Order not found")

    @staticmethod
    def _new_id(existing: set[str]) -> str:
        candidate = int(time.time() * 1000)
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)
