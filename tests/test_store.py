"""Tests for the JSON record store: round trips, atomic writes and locking."""

import json
import threading

import pytest
from conftest import amal_order

from deliverydesk.domain import Agent
from deliverydesk.services.order_service import OrderService
from deliverydesk.store import AGENTS, ORDERS, JsonRecordStore, StoreError


class TestLoadAndSave:
    def test_missing_collections_load_empty(self, store):
        assert store.load_orders() == []
        assert store.load_agents() == []
        assert store.load_identities() == []

    def test_empty_file_loads_empty(self, store, data_dir):
        (data_dir / "agents.json").write_text("", encoding="utf-8")
        assert store.load_agents() == []

    def test_save_of_load_is_a_no_op(self, store):
        service = OrderService(store=store)
        service.submit_order(amal_order())
        service.submit_order(amal_order(name="Nadia", phone="556"))

        before = store.load_orders()
        store.save_orders(store.load_orders())

        assert store.load_orders() == before

    def test_orders_are_stored_with_wire_field_names(self, store, data_dir):
        OrderService(store=store).submit_order(amal_order())

        raw = json.loads((data_dir / "orders.json").read_text(encoding="utf-8"))
        assert raw[0]["clientPhone"] == "555"
        assert raw[0]["deliveryAgent"] is None
        assert raw[0]["items"] == [{"name": "Pizza", "price": 1200}]

    def test_save_replaces_whole_collection(self, store):
        store.save_agents([Agent("a", "1"), Agent("b", "2")])
        store.save_agents([Agent("c", "3")])

        assert store.load_agents() == [Agent("c", "3")]

    def test_data_survives_a_new_store_instance(self, store, data_dir):
        store.save_agents([Agent("Karim", "700")])

        assert JsonRecordStore(data_dir).load_agents() == [Agent("Karim", "700")]


class TestFailures:
    def test_corrupt_file_raises(self, store, data_dir):
        (data_dir / "orders.json").write_text("[{not json", encoding="utf-8")
        with pytest.raises(StoreError):
            store.load_orders()

    def test_non_list_document_raises(self, store, data_dir):
        (data_dir / "orders.json").write_text("{}", encoding="utf-8")
        with pytest.raises(StoreError):
            store.load_orders()

    def test_malformed_record_raises(self, store, data_dir):
        (data_dir / "agents.json").write_text('[{"username": "x"}]', encoding="utf-8")
        with pytest.raises(StoreError):
            store.load_agents()

    def test_failed_write_keeps_previous_content(self, store, data_dir):
        store.save_agents([Agent("Karim", "700")])

        with pytest.raises(StoreError):
            store._write(AGENTS, [{"username": object(), "phone": "1"}])

        assert store.load_agents() == [Agent("Karim", "700")]
        assert [p.name for p in data_dir.iterdir() if p.suffix == ".tmp"] == []

    def test_unknown_collection(self, store):
        with pytest.raises(StoreError):
            with store.locked("payments"):
                pass


class TestLocking:
    def test_concurrent_read_modify_write_loses_nothing(self, store):
        threads = 16
        barrier = threading.Barrier(threads)

        def add_agent(n):
            barrier.wait()
            with store.locked(AGENTS):
                agents = store.load_agents()
                agents.append(Agent(f"agent-{n}", str(n)))
                store.save_agents(agents)

        workers = [threading.Thread(target=add_agent, args=(n,)) for n in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        assert sorted(a.phone for a in store.load_agents()) == sorted(str(n) for n in range(threads))

    def test_collections_lock_independently(self, store):
        acquired = threading.Event()

        with store.locked(ORDERS):
            def touch_agents():
                with store.locked(AGENTS):
                    acquired.set()

            t = threading.Thread(target=touch_agents)
            t.start()
            t.join(timeout=5)

        assert acquired.is_set()

    def test_lock_timeout_raises(self, data_dir):
        store = JsonRecordStore(data_dir, lock_timeout=0.1)
        errors = []
        release = threading.Event()
        held = threading.Event()

        def holder():
            with store.locked(ORDERS):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        try:
            with store.locked(ORDERS):
                pass
        except StoreError as e:
            errors.append(e)
        finally:
            release.set()
            t.join()

        assert len(errors) == 1
