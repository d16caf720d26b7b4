from __future__ import annotations

import structlog

from ..domain import ROLES, Agent, Identity
from ..store import AGENTS, IDENTITIES, RecordStore
from .order_service import ValidationError

logger = structlog.get_logger(__name__)


class IdentityService:
    """
    Phone-keyed identities and the agent directory.

    The first role recorded for a phone wins; later logins reuse it whatever
    role they ask for. Phones that predate the identity table are resolved
    from the agent directory and then from customer records on orders.
    """

    def __init__(self, *, store: RecordStore) -> None:
        self.store = store

    def login(self, *, phone: str, username: str, role: str = "client") -> Identity:
        phone = (phone or "").strip()
        username = (username or "").strip()
        if not phone or not username:
            raise ValidationError("Phone and username required")
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")

        with self.store.locked(IDENTITIES):
            identities = self.store.load_identities()
            identity = next((i for i in identities if i.phone == phone), None)
            if identity is None:
                identity = self._legacy_identity(phone) or Identity(phone=phone, username=username, role=role)
                identities.append(identity)
                self.store.save_identities(identities)
                logger.info("identity.provisioned", phone=phone, role=identity.role)

        if identity.role == "agent":
            self.add_agent(username=identity.username, phone=identity.phone)
        return identity

    def register_customer(self, *, phone: str, username: str) -> Identity:
        with self.store.locked(IDENTITIES):
            identities = self.store.load_identities()
            for identity in identities:
                if identity.phone == phone:
                    return identity
            identity = Identity(phone=phone, username=username, role="client")
            identities.append(identity)
            self.store.save_identities(identities)
        return identity

    def add_agent(self, *, username: str, phone: str) -> Agent:
        username = (username or "").strip()
        phone = (phone or "").strip()
        if not phone or not username:
            raise ValidationError("Agent username and phone required")

        with self.store.locked(AGENTS):
            agents = self.store.load_agents()
            for agent in agents:
                if agent.phone == phone:
                    return agent
            agent = Agent(username=username, phone=phone)
            agents.append(agent)
            self.store.save_agents(agents)
        logger.info("agent.registered", phone=phone, username=username)
        return agent

    def list_agents(self) -> list[Agent]:
        return self.store.load_agents()

    def _legacy_identity(self, phone: str) -> Identity | None:
        for agent in self.store.load_agents():
            if agent.phone == phone:
                return Identity(phone=phone, username=agent.username, role="agent")
        for order in self.store.load_orders():
            if order.client_phone == phone:
                return Identity(phone=phone, username=order.client, role="client")
        return None
