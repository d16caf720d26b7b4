from __future__ import annotations

import csv
import json
import math
from pathlib import Path

from .domain import Order
from .lifecycle import InvariantViolation, check_invariant
from .services.identity_service import IdentityService
from .store import ORDERS, RecordStore


class ImportError(Exception):
    pass


def _is_amount(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value >= 0


def import_agents_registry(path: str | Path, identity_service: IdentityService) -> int:
    """Import a legacy agent registry: one ``username,phone`` pair per line."""
    p = Path(path)
    if not p.exists():
        raise ImportError(f"File not found: {p}")

    count = 0
    known = {a.phone for a in identity_service.list_agents()}
    with p.open("r", encoding="utf-8", newline="") as f:
        for lineno, row in enumerate(csv.reader(f), start=1):
            if not row or not "".join(row).strip():
                continue
            if len(row) < 2:
                raise ImportError(f"Expected 'username,phone' on line {lineno}: {row}")
            username, phone = row[0].strip(), row[1].strip()
            if not username or not phone or phone in known:
                continue
            identity_service.add_agent(username=username, phone=phone)
            known.add(phone)
            count += 1
    return count


def import_orders_json(path: str | Path, store: RecordStore) -> int:
    """Merge a legacy orders.json into the store. Existing ids are left untouched."""
    p = Path(path)
    if not p.exists():
        raise ImportError(f"File not found: {p}")

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ImportError(f"Invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise ImportError("JSON must be a list of objects")

    incoming = []
    for obj in data:
        if not isinstance(obj, dict) or not obj.get("id") or not obj.get("clientPhone"):
            continue
        try:
            order = check_invariant(Order.from_dict(obj))
            if not all(_is_amount(v) for v in (order.total, order.delivery_price, *(i.price for i in order.items))):
                raise ValueError("prices must be non-negative numbers")
            incoming.append(order)
        except (KeyError, TypeError, ValueError, InvariantViolation) as e:
            raise ImportError(f"Malformed order {obj.get('id')}: {e}") from e

    with store.locked(ORDERS):
        orders = store.load_orders()
        existing = {o.id for o in orders}
        added = []
        for order in incoming:
            if order.id not in existing:
                existing.add(order.id)
                added.append(order)
        if added:
            store.save_orders(orders + added)
    return len(added)
