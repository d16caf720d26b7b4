from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

OrderStatus = Literal["pending", "assigned", "ready", "in_transit", "arrived", "delivered"]
Role = Literal["client", "agent"]

ROLES = ("client", "agent")


@dataclass(frozen=True)
class OrderItem:
    name: str
    price: float

    def to_dict(self) -> dict:
        return {"name": self.name, "price": self.price}

    @classmethod
    def from_dict(cls, data: dict) -> "OrderItem":
        return cls(name=str(data["name"]), price=data["price"])


@dataclass(frozen=True)
class Order:
    id: str
    client: str
    client_phone: str
    address: str
    items: tuple[OrderItem, ...]
    total: float
    delivery_price: float
    status: OrderStatus
    delivery_agent: Optional[str]
    agent_name: Optional[str]
    created_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client": self.client,
            "clientPhone": self.client_phone,
            "address": self.address,
            "items": [i.to_dict() for i in self.items],
            "total": self.total,
            "deliveryPrice": self.delivery_price,
            "status": self.status,
            "deliveryAgent": self.delivery_agent,
            "agentName": self.agent_name,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Order":
        return cls(
            id=str(data["id"]),
            client=str(data["client"]),
            client_phone=str(data["clientPhone"]),
            address=str(data["address"]),
            items=tuple(OrderItem.from_dict(i) for i in data.get("items") or []),
            total=data["total"],
            delivery_price=data["deliveryPrice"],
            status=data.get("status", "pending"),
            delivery_agent=data.get("deliveryAgent"),
            agent_name=data.get("agentName"),
            created_at=str(data.get("createdAt") or utcnow_iso()),
        )


@dataclass(frozen=True)
class Agent:
    username: str
    phone: str
    role: Role = "agent"

    def to_dict(self) -> dict:
        return {"username": self.username, "phone": self.phone, "role": self.role}

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        return cls(username=str(data["username"]), phone=str(data["phone"]))


@dataclass(frozen=True)
class Identity:
    phone: str
    username: str
    role: Role

    def to_dict(self) -> dict:
        return {"phone": self.phone, "username": self.username, "role": self.role}

    @classmethod
    def from_dict(cls, data: dict) -> "Identity":
        return cls(phone=str(data["phone"]), username=str(data["username"]), role=data["role"])


@dataclass(frozen=True)
class Claims:
    phone: str
    username: str
    role: Role

    def to_dict(self) -> dict:
        return {"phone": self.phone, "username": self.username, "role": self.role}


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
