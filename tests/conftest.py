import pytest

from deliverydesk.config import config_from_mapping
from deliverydesk.domain import Claims
from deliverydesk.notifier import NotificationDispatcher
from deliverydesk.services.identity_service import IdentityService
from deliverydesk.services.order_service import OrderService, SubmitOrderInput
from deliverydesk.store import JsonRecordStore
from deliverydesk.web_app import create_app

SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class RecordingTransport:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent = []
        self.calls = 0

    def send(self, notification):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("smtp down")
        self.sent.append(notification)


@pytest.fixture()
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture()
def store(data_dir):
    return JsonRecordStore(data_dir, lock_timeout=5)


@pytest.fixture()
def cfg(data_dir):
    return config_from_mapping(
        {"app": {"secret_key": SECRET}, "storage": {"data_dir": str(data_dir), "lock_timeout": 5}},
        env={},
    )


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def notifier(transport):
    return NotificationDispatcher(transport, background=False)


@pytest.fixture()
def identity_service(store):
    return IdentityService(store=store)


@pytest.fixture()
def order_service(store, notifier, identity_service):
    return OrderService(store=store, notifier=notifier, identities=identity_service)


@pytest.fixture()
def app(cfg, store, notifier):
    app = create_app(cfg, store=store, notifier=notifier)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def amal_order(**overrides):
    data = dict(
        name="Amal",
        phone="555",
        address="Algiers",
        cart=[{"name": "Pizza", "price": 1200}],
        total_price=1200,
        delivery_price=300,
    )
    data.update(overrides)
    return SubmitOrderInput(**data)


def agent(phone="700", username="Karim"):
    return Claims(phone=phone, username=username, role="agent")


def login(client, phone, username, role=None):
    body = {"phone": phone, "username": username}
    if role is not None:
        body["role"] = role
    response = client.post("/login", json=body)
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
