"""HTTP tests for the delivery API."""

import pytest
from conftest import RecordingTransport, bearer, login

from deliverydesk.notifier import NotificationDispatcher
from deliverydesk.web_app import create_app

AMAL = {
    "name": "Amal",
    "phone": "555",
    "address": "Algiers",
    "cart": [{"name": "Pizza", "price": 1200}],
    "totalPrice": 1200,
    "deliveryPrice": 300,
}


def _submit(client, **overrides):
    response = client.post("/api/submit-order", json={**AMAL, **overrides})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["order"]


class TestCustomerFlow:
    def test_submit_then_track(self, client):
        response = client.post("/api/submit-order", json=AMAL)

        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Order received!"
        assert body["order"]["status"] == "pending"
        assert body["order"]["deliveryAgent"] is None
        assert body["order"]["agentName"] is None

        tracked = client.get("/api/orders/555").get_json()
        assert tracked == [body["order"]]

    def test_unknown_customer_has_no_orders(self, client):
        assert client.get("/api/orders/000").get_json() == []

    @pytest.mark.parametrize("missing", ["name", "phone", "address", "cart", "totalPrice", "deliveryPrice"])
    def test_missing_fields(self, client, missing):
        body = {k: v for k, v in AMAL.items() if k != missing}
        response = client.post("/api/submit-order", json=body)

        assert response.status_code == 400
        assert response.get_json()["error"] == "Missing order details"

    def test_non_object_body(self, client):
        response = client.post("/api/submit-order", json=["nope"])
        assert response.status_code == 400

    def test_non_finite_prices_are_rejected(self, client):
        body = (
            '{"name": "Amal", "phone": "555", "address": "Algiers", '
            '"cart": [{"name": "Pizza", "price": 1200}], "totalPrice": NaN, "deliveryPrice": Infinity}'
        )
        response = client.post("/api/submit-order", data=body, content_type="application/json")

        assert response.status_code == 400
        assert client.get("/api/orders/555").get_json() == []

    def test_identity_store_failure_still_returns_the_order(self, client, data_dir, transport):
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / "identities.json").write_text("{broken", encoding="utf-8")

        response = client.post("/api/submit-order", json=AMAL)

        assert response.status_code == 200
        assert response.get_json()["order"]["clientPhone"] == "555"
        assert len(transport.sent) == 1

    def test_notification_failure_is_500_but_order_is_recorded(self, cfg, store):
        failing = NotificationDispatcher(RecordingTransport(failures=10), retry_backoff=0, background=False)
        client = create_app(cfg, store=store, notifier=failing).test_client()

        response = client.post("/api/submit-order", json=AMAL)

        assert response.status_code == 500
        assert response.get_json()["order"]["clientPhone"] == "555"
        assert len(client.get("/api/orders/555").get_json()) == 1


class TestLogin:
    def test_defaults_to_client(self, client):
        response = client.post("/login", json={"phone": "555", "username": "Amal"})

        assert response.status_code == 200
        assert response.get_json()["user"] == {"phone": "555", "username": "Amal", "role": "client"}
        assert response.get_json()["token"]

    def test_requires_phone_and_username(self, client):
        response = client.post("/login", json={"phone": "555"})
        assert response.status_code == 400

    def test_known_phone_keeps_its_role(self, client):
        login(client, "555", "Amal")
        response = client.post("/login", json={"phone": "555", "username": "Amal", "role": "agent"})
        assert response.get_json()["user"]["role"] == "client"

    def test_customer_from_order_cannot_become_agent(self, client):
        _submit(client)
        token = login(client, "555", "Amal", role="agent")

        response = client.get("/delivery/orders", headers=bearer(token))
        assert response.status_code == 403


class TestCredentials:
    def test_missing_header(self, client):
        response = client.get("/delivery/orders")
        assert response.status_code == 401
        assert response.get_json()["error"] == "No authorization header"

    def test_malformed_header(self, client):
        response = client.get("/delivery/orders", headers={"Authorization": "Bearer"})
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/delivery/orders", headers=bearer("abc.def.ghi"))
        assert response.status_code == 403

    def test_client_token_is_forbidden(self, client):
        token = login(client, "555", "Amal")
        assert client.get("/delivery/orders", headers=bearer(token)).status_code == 403
        assert client.post("/delivery/orders/1/assign", headers=bearer(token)).status_code == 403


class TestDeliveryFlow:
    def test_assign_and_progress(self, client):
        order = _submit(client)
        token = login(client, "700", "Karim", role="agent")

        listed = client.get("/delivery/orders", headers=bearer(token)).get_json()
        assert [o["id"] for o in listed] == [order["id"]]

        response = client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(token))
        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == f"Order {order['id']} assigned to you"
        assert body["order"]["status"] == "assigned"
        assert body["order"]["deliveryAgent"] == "700"
        assert body["order"]["agentName"] == "Karim"

        response = client.post(
            f"/delivery/orders/{order['id']}/status", json={"status": "in_transit"}, headers=bearer(token)
        )
        assert response.status_code == 200
        assert response.get_json()["message"] == f'Order {order["id"]} status updated to "in_transit"'

        tracked = client.get("/api/orders/555").get_json()
        assert tracked[0]["status"] == "in_transit"

    def test_second_agent_gets_already_assigned(self, client):
        order = _submit(client)
        first = login(client, "700", "Karim", role="agent")
        second = login(client, "701", "Sami", role="agent")

        assert client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(first)).status_code == 200
        response = client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(second))

        assert response.status_code == 400
        assert response.get_json()["error"] == "Order already assigned"
        assert client.get("/api/orders/555").get_json()[0]["deliveryAgent"] == "700"

    def test_assigned_orders_are_hidden_from_other_agents(self, client):
        order = _submit(client)
        first = login(client, "700", "Karim", role="agent")
        second = login(client, "701", "Sami", role="agent")
        client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(first))

        assert client.get("/delivery/orders", headers=bearer(second)).get_json() == []

    def test_assign_unknown_order(self, client):
        token = login(client, "700", "Karim", role="agent")
        assert client.post("/delivery/orders/404/assign", headers=bearer(token)).status_code == 404

    def test_status_by_non_owner(self, client):
        order = _submit(client)
        first = login(client, "700", "Karim", role="agent")
        second = login(client, "701", "Sami", role="agent")
        client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(first))

        response = client.post(
            f"/delivery/orders/{order['id']}/status", json={"status": "delivered"}, headers=bearer(second)
        )

        assert response.status_code == 403
        assert client.get("/api/orders/555").get_json()[0]["status"] == "assigned"

    def test_invalid_status_value(self, client):
        order = _submit(client)
        token = login(client, "700", "Karim", role="agent")
        client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(token))

        response = client.post(
            f"/delivery/orders/{order['id']}/status", json={"status": "teleported"}, headers=bearer(token)
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid status"

    def test_status_of_unknown_order(self, client):
        token = login(client, "700", "Karim", role="agent")
        response = client.post("/delivery/orders/404/status", json={"status": "ready"}, headers=bearer(token))
        assert response.status_code == 404

    def test_delivered_order_cannot_move_back(self, client):
        order = _submit(client)
        token = login(client, "700", "Karim", role="agent")
        client.post(f"/delivery/orders/{order['id']}/assign", headers=bearer(token))
        client.post(f"/delivery/orders/{order['id']}/status", json={"status": "delivered"}, headers=bearer(token))

        response = client.post(
            f"/delivery/orders/{order['id']}/status", json={"status": "ready"}, headers=bearer(token)
        )
        assert response.status_code == 400


class TestInfrastructure:
    def test_health(self, client):
        assert client.get("/health").get_json() == {"status": "ok"}

    def test_store_failure_is_500(self, client, data_dir):
        (data_dir / "orders.json").write_text("{broken", encoding="utf-8")
        response = client.get("/api/orders/555")
        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}
