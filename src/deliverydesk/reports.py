from __future__ import annotations

from collections import Counter

from .domain import Order
from .lifecycle import DELIVERED, TRANSITIONS


def status_report(orders: list[Order]) -> dict:
    counts = Counter(o.status for o in orders)
    return {
        "orders_count": len(orders),
        "by_status": {status: counts.get(status, 0) for status in TRANSITIONS},
        "order_value": sum(o.total + o.delivery_price for o in orders),
        "delivered_value": sum(o.total + o.delivery_price for o in orders if o.status == DELIVERED),
    }


def agent_report(orders: list[Order]) -> list[dict]:
    rows: dict[str, dict] = {}
    for o in orders:
        if o.delivery_agent is None:
            continue
        row = rows.setdefault(
            o.delivery_agent,
            {"phone": o.delivery_agent, "name": o.agent_name, "open": 0, "delivered": 0},
        )
        if o.status == DELIVERED:
            row["delivered"] += 1
        else:
            row["open"] += 1
    return sorted(rows.values(), key=lambda r: (-r["delivered"], r["phone"]))
