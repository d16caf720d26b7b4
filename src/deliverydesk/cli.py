from __future__ import annotations

from .importers import ImportError, import_agents_registry, import_orders_json
from .reports import agent_report, status_report
from .services.identity_service import IdentityService
from .services.order_service import ValidationError
from .store import RecordStore, StoreError


def _prompt(msg: str) -> str:
    return input(msg).strip()


def run_cli(store: RecordStore) -> None:
    identity_service = IdentityService(store=store)

    while True:
        print("\n=== DeliveryDesk CLI ===")
        print("1) List orders")
        print("2) List delivery agents")
        print("3) Add delivery agent")
        print("4) Import legacy orders.json")
        print("5) Import legacy agent registry (username,phone)")
        print("6) Delivery report")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                return

            elif choice == "1":
                for o in store.load_orders()[-50:]:
                    agent = f"{o.agent_name} ({o.delivery_agent})" if o.delivery_agent else "-"
                    print(
                        f"#{o.id} {o.status} client={o.client} phone={o.client_phone} "
                        f"total={o.total} delivery={o.delivery_price} agent={agent}"
                    )

            elif choice == "2":
                for a in identity_service.list_agents():
                    print(f"{a.username} phone={a.phone}")

            elif choice == "3":
                username = _prompt("username: ")
                phone = _prompt("phone: ")
                agent = identity_service.add_agent(username=username, phone=phone)
                print(f"Agent {agent.username} ({agent.phone}) registered")

            elif choice == "4":
                path = _prompt("path to orders.json: ")
                n = import_orders_json(path, store)
                print(f"Imported orders: {n}")

            elif choice == "5":
                path = _prompt("path to agent registry: ")
                n = import_agents_registry(path, identity_service)
                print(f"Imported agents: {n}")

            elif choice == "6":
                orders = store.load_orders()
                rep = status_report(orders)
                print(f"Orders: {rep['orders_count']} value={rep['order_value']} delivered={rep['delivered_value']}")
                for status, n in rep["by_status"].items():
                    print(f"  {status}: {n}")
                print("Agents:")
                for row in agent_report(orders):
                    print(f'  {row["name"]} ({row["phone"]}) open={row["open"]} delivered={row["delivered"]}')

            else:
                print("Unknown choice.")

        except ValidationError as e:
            print(f"[INPUT ERROR] {e}")
        except ImportError as e:
            print(f"[IMPORT ERROR] {e}")
        except StoreError as e:
            print(f"[STORE ERROR] {e}")
        except Exception as e:
            print(f"[ERROR] {type(e).__name__}: {e}")
