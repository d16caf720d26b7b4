from __future__ import annotations

import argparse
import os
from pathlib import Path

import structlog
from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, request

from .auth import Forbidden, InvalidOrExpiredToken, NotOwner, TokenIssuer, Unauthenticated, bearer_token
from .config import AppConfig, ConfigError, load_config
from .domain import Claims
from .lifecycle import AlreadyAssigned, InvalidTransition, InvariantViolation
from .logging_config import configure_logging
from .notifier import NotificationDispatcher
from .services.identity_service import IdentityService
from .services.order_service import (
    NotFound,
    OrderNotificationFailed,
    OrderService,
    SubmitOrderInput,
    ValidationError,
)
from .store import RecordStore, StoreError, open_store

logger = structlog.get_logger(__name__)

bp = Blueprint("deliverydesk", __name__)

ERROR_STATUS = {
    ValidationError: 400,
    AlreadyAssigned: 400,
    InvalidTransition: 400,
    Unauthenticated: 401,
    InvalidOrExpiredToken: 403,
    Forbidden: 403,
    NotOwner: 403,
    NotFound: 404,
}


def _services() -> dict:
    return current_app.extensions["deliverydesk"]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _current_claims() -> Claims:
    token = bearer_token(request.headers.get("Authorization"))
    return _services()["issuer"].verify(token)


@bp.route("/health")
def health():
    return jsonify({"status": "ok"})


@bp.route("/login", methods=["POST"])
def login():
    data = _json_body()
    identity = _services()["identities"].login(
        phone=str(data.get("phone") or ""),
        username=str(data.get("username") or ""),
        role=data.get("role") or "client",
    )
    claims = Claims(phone=identity.phone, username=identity.username, role=identity.role)
    token = _services()["issuer"].issue(claims)
    return jsonify({"token": token, "user": identity.to_dict()})


@bp.route("/delivery/orders")
def delivery_orders():
    orders = _services()["orders"].orders_for_agent(_current_claims())
    return jsonify([o.to_dict() for o in orders])


@bp.route("/delivery/orders/<order_id>/assign", methods=["POST"])
def assign_order(order_id):
    order = _services()["orders"].assign(order_id, _current_claims())
    return jsonify({"message": f"Order {order.id} assigned to you", "order": order.to_dict()})


@bp.route("/delivery/orders/<order_id>/status", methods=["POST"])
def update_order_status(order_id):
    claims = _current_claims()
    status = _json_body().get("status")
    order = _services()["orders"].update_status(order_id, status, claims)
    return jsonify({"message": f'Order {order.id} status updated to "{order.status}"', "order": order.to_dict()})


@bp.route("/api/submit-order", methods=["POST"])
def submit_order():
    data = _json_body()
    order = _services()["orders"].submit_order(
        SubmitOrderInput(
            name=data.get("name"),
            phone=data.get("phone"),
            address=data.get("address"),
            cart=data.get("cart"),
            total_price=data.get("totalPrice"),
            delivery_price=data.get("deliveryPrice"),
        )
    )
    return jsonify({"message": "Order received!", "order": order.to_dict()})


@bp.route("/api/orders/<phone>")
def customer_orders(phone):
    orders = _services()["orders"].orders_for_customer(phone)
    return jsonify([o.to_dict() for o in orders])


def _handle_domain_error(e: Exception):
    for exc_type, status in ERROR_STATUS.items():
        if isinstance(e, exc_type):
            return jsonify({"error": str(e)}), status
    return _handle_internal_error(e)


def _handle_notification_failure(e: OrderNotificationFailed):
    return jsonify({"error": str(e), "order": e.order.to_dict()}), 500


def _handle_internal_error(e: Exception):
    logger.error("request.failed", path=request.path, error=str(e), exc_info=e)
    return jsonify({"error": "Internal server error"}), 500


def create_app(
    cfg: AppConfig,
    *,
    store: RecordStore | None = None,
    notifier: NotificationDispatcher | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = cfg.secret_key

    store = store if store is not None else open_store(cfg.storage, cfg.db)
    notifier = notifier if notifier is not None else NotificationDispatcher.from_config(cfg.notify)
    identities = IdentityService(store=store)
    app.extensions["deliverydesk"] = {
        "config": cfg,
        "store": store,
        "notifier": notifier,
        "issuer": TokenIssuer(cfg.secret_key, ttl_hours=cfg.token_ttl_hours),
        "identities": identities,
        "orders": OrderService(store=store, notifier=notifier, identities=identities),
    }

    app.register_blueprint(bp)
    for exc_type in ERROR_STATUS:
        app.register_error_handler(exc_type, _handle_domain_error)
    app.register_error_handler(OrderNotificationFailed, _handle_notification_failure)
    app.register_error_handler(StoreError, _handle_internal_error)
    app.register_error_handler(InvariantViolation, _handle_internal_error)
    return app


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="DeliveryDesk HTTP server.")
    parser.add_argument("--config", help="Path to config.toml (default: $DELIVERYDESK_CONFIG or ./config.toml)")
    parser.add_argument("--host", help="Bind address (overrides [server] host)")
    parser.add_argument("--port", type=int, help="Port (overrides [server] port and $PORT)")
    args = parser.parse_args(argv)

    load_dotenv()
    path = args.config or os.getenv("DELIVERYDESK_CONFIG")
    if path is None and Path("config.toml").exists():
        path = "config.toml"

    try:
        cfg = load_config(path)
        configure_logging(cfg.log_level)
        app = create_app(cfg)
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except StoreError as e:
        print(f"[STORE ERROR] {e}")
        return 3

    notifier = app.extensions["deliverydesk"]["notifier"]
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port
    logger.info("server.starting", host=host, port=port, storage=cfg.storage.backend)
    try:
        app.run(host=host, port=port, threaded=True)
    finally:
        notifier.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
